import asyncio
import json
import logging
from datetime import date, timedelta
from typing import Protocol

import openai
from openai import AsyncOpenAI

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.errors import OracleUnavailable

logger = logging.getLogger(__name__)

# Initialize OpenAI client (absent when no key is configured)
client = (
    AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.LLM_TIMEOUT_SECONDS, max_retries=1)
    if settings.OPENAI_API_KEY
    else None
)

LANGUAGE_NAMES = {"en": "English", "es": "Spanish"}


async def call_llm_with_history(
    system_prompt: str,
    messages: list[dict],
    temperature: float = 0.3,
    model: str | None = None,
) -> str:
    """
    Call OpenAI with the conversation so far and return the reply text.

    Args:
        system_prompt: Instructions for the assistant
        messages: List of {"role": "user"|"assistant", "content": "..."}
        temperature: Creativity level
        model: Which OpenAI model to use (defaults to settings)

    Raises:
        OracleUnavailable: no client, timeout, or API error
    """
    if client is None:
        raise OracleUnavailable("No OpenAI API key configured")

    full_messages = [{"role": "system", "content": system_prompt}] + messages
    try:
        response = await asyncio.wait_for(
            client.chat.completions.create(
                model=model or settings.OPENAI_MODEL,
                messages=full_messages,
                temperature=temperature,
            ),
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
    except (asyncio.TimeoutError, openai.OpenAIError) as exc:
        raise OracleUnavailable(str(exc) or type(exc).__name__) from exc

    return response.choices[0].message.content or ""


async def extract_json_from_llm(
    system_prompt: str,
    user_message: str,
    history: list[dict] | None = None,
    temperature: float = 0.0,
    model: str | None = None,
) -> dict:
    """
    Call OpenAI in JSON mode and parse the response.
    Used for structured extraction (intents, entities).

    Raises:
        OracleUnavailable: the call failed or the reply was not a JSON object
    """
    if client is None:
        raise OracleUnavailable("No OpenAI API key configured")

    messages = [{"role": "system", "content": system_prompt}]
    messages += history or []
    messages.append({"role": "user", "content": user_message})
    try:
        response = await asyncio.wait_for(
            client.chat.completions.create(
                model=model or settings.OPENAI_MODEL,
                messages=messages,
                temperature=temperature,
                response_format={"type": "json_object"},
            ),
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
    except (asyncio.TimeoutError, openai.OpenAIError) as exc:
        raise OracleUnavailable(str(exc) or type(exc).__name__) from exc

    content = response.choices[0].message.content or ""
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as exc:
        raise OracleUnavailable(f"Failed to parse JSON: {content[:200]}") from exc
    if not isinstance(parsed, dict):
        raise OracleUnavailable(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


# ============== NLU oracle ==============

class NLUOracle(Protocol):
    """What the resolver needs from a language model. Every call may raise ``OracleUnavailable``."""

    async def classify(self, message: str, recent_turns: list[dict], language: str) -> dict: ...

    async def extract(
        self,
        message: str,
        recent_turns: list[dict],
        services: list[dict],
        dentists: list[dict],
        language: str,
        today: date,
    ) -> dict: ...

    async def answer(self, message: str, recent_turns: list[dict], language: str) -> str: ...


def _date_context(today: date) -> str:
    tomorrow = today + timedelta(days=1)
    return f"""
Current date information (USE THIS FOR DATE PARSING):
- Today is: {today.strftime('%A')}, {today.strftime('%B %d, %Y')}
- Today's date: {today.isoformat()}
- Tomorrow's date: {tomorrow.isoformat()}
"""


class OpenAIOracle:
    """NLU oracle backed by OpenAI chat completions."""

    async def classify(self, message: str, recent_turns: list[dict], language: str) -> dict:
        system_prompt = f"""You classify messages sent to the appointment assistant of a dental clinic.

Respond with JSON only:
{{
    "intent": "book" | "cancel" | "reschedule" | "history" | "question",
    "confidence": number between 0 and 1
}}

Intent definitions:
- book: the patient wants a new appointment, or is answering questions about one (date, time, service, dentist)
- cancel: the patient wants to cancel an existing appointment
- reschedule: the patient wants to move an existing appointment to another date or time
- history: the patient asks about their past or upcoming appointments
- question: anything else about the clinic, its dentists, services or dental care

The patient writes in {LANGUAGE_NAMES.get(language, "English")}."""
        return await extract_json_from_llm(system_prompt, message, history=recent_turns[-4:])

    async def extract(
        self,
        message: str,
        recent_turns: list[dict],
        services: list[dict],
        dentists: list[dict],
        language: str,
        today: date,
    ) -> dict:
        services_list = [s["name"] for s in services]
        dentists_list = [d["name"] for d in dentists]
        system_prompt = f"""You extract appointment details from a patient's message.
{_date_context(today)}
Clinic services: {services_list}
Clinic dentists: {dentists_list}

Respond with JSON only, using null for anything not mentioned:
{{
    "date": "YYYY-MM-DD or null",
    "time": "HH:MM in 24h format or null",
    "serviceName": "one of the clinic services or null",
    "dentistName": "one of the clinic dentists or null",
    "appointmentId": "numeric appointment id or null"
}}

Never invent a date or time the patient did not give. The patient writes in {LANGUAGE_NAMES.get(language, "English")}."""
        return await extract_json_from_llm(system_prompt, message, history=recent_turns[-4:])

    async def answer(self, message: str, recent_turns: list[dict], language: str) -> str:
        system_prompt = f"""You are the assistant of {settings.CLINIC_NAME}, a dental clinic.
You can ONLY help with appointments, the clinic's dentists and services, opening hours,
and general dental care questions. Keep answers short and friendly. Do not give diagnoses;
suggest booking a visit when the patient describes symptoms.
Always answer in {LANGUAGE_NAMES.get(language, "English")}."""
        return await call_llm_with_history(system_prompt, recent_turns + [{"role": "user", "content": message}])


def default_oracle() -> NLUOracle | None:
    """The configured oracle, or ``None`` when running without a language model."""
    if client is None:
        logger.info("No OpenAI API key configured; resolver runs on deterministic parsing only")
        return None
    return OpenAIOracle()
