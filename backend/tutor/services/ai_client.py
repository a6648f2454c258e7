"""
Language-model client for the tutor.

Primary provider:
  Oracle Generative AI Inference via OCI SDK + signed requests using ~/.oci/config.

Secondary provider:
  Anthropic (only when OCI is not configured).

Both return the reply text plus token usage. Failures surface as
``UpstreamModelError`` (502); nothing is retried here.
"""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path

import anthropic
import oci

from tutor.config import settings
from tutor.errors import DependencyError, UpstreamModelError
from tutor.services.trace import RequestTrace


@dataclass(frozen=True)
class ModelReply:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""


# ─────────────────────────────────────────────────────────────────────────────
# Request / response builders
# ─────────────────────────────────────────────────────────────────────────────

def _build_chat_body(system: str, messages: list[dict], max_tokens: int, temperature: float) -> dict:
    """Build the GENERIC-format JSON body for POST /actions/chat."""
    oci_msgs = []
    for m in messages:
        role = "USER" if m.get("role", "user") == "user" else "ASSISTANT"
        oci_msgs.append({
            "role": role,
            "content": [{"type": "TEXT", "text": m.get("content", "")}],
        })
    if system:
        oci_msgs.insert(0, {"role": "SYSTEM", "content": [{"type": "TEXT", "text": system}]})

    body: dict = {
        "servingMode": {"servingType": "ON_DEMAND", "modelId": settings.ORACLE_GENAI_MODEL},
        "chatRequest": {
            "apiFormat": "GENERIC",
            "messages": oci_msgs,
            "maxTokens": max_tokens,
            "temperature": temperature,
            "isStream": False,
        },
    }
    if settings.ORACLE_GENAI_COMPARTMENT_ID:
        body["compartmentId"] = settings.ORACLE_GENAI_COMPARTMENT_ID
    return body


def _parse_chat_response(response_json: dict) -> ModelReply:
    """Pull text and usage from an /actions/chat response."""
    chat_resp = response_json.get("chatResponse", {})
    text = ""
    choices = chat_resp.get("choices", [])
    if choices:
        content = choices[0].get("message", {}).get("content", [])
        if isinstance(content, list) and content:
            text = content[0].get("text", "")
        elif content:
            text = str(content)
    usage = chat_resp.get("usage") or {}
    return ModelReply(
        text=text,
        input_tokens=int(usage.get("promptTokens") or 0),
        output_tokens=int(usage.get("completionTokens") or 0),
        model=settings.ORACLE_GENAI_MODEL,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Oracle GenAI (OCI signed requests)
# ─────────────────────────────────────────────────────────────────────────────

def _oci_config() -> dict:
    cfg_file = str(Path(settings.OCI_CONFIG_FILE).expanduser())
    return oci.config.from_file(file_location=cfg_file, profile_name=settings.OCI_CONFIG_PROFILE)


def _oci_endpoint(cfg: dict) -> str:
    if settings.ORACLE_GENAI_BASE_URL:
        return settings.ORACLE_GENAI_BASE_URL.rstrip("/")
    region = cfg.get("region", "us-chicago-1")
    return f"https://inference.generativeai.{region}.oci.oraclecloud.com"


def _oci_post(path: str, body: dict, timeout: tuple = (10.0, 120.0)) -> dict:
    """Signed POST through the OCI base client; returns the decoded JSON body."""
    cfg = _oci_config()
    client = oci.generative_ai_inference.GenerativeAiInferenceClient(
        config=cfg,
        service_endpoint=_oci_endpoint(cfg),
        timeout=timeout,
    )
    response = client.base_client.call_api(
        resource_path=path,
        method="POST",
        header_params={"content-type": "application/json"},
        body=body,
        response_type="str",
    )
    text = response.data if isinstance(response.data, str) else str(response.data)
    return json.loads(text)


async def _oracle_chat(system: str, messages: list[dict], max_tokens: int, temperature: float) -> ModelReply:
    body = _build_chat_body(system, messages, max_tokens, temperature)
    # The SDK prefixes the API version (/20231130) itself.
    data = await asyncio.to_thread(_oci_post, "/actions/chat", body)
    return _parse_chat_response(data)


# ─────────────────────────────────────────────────────────────────────────────
# Anthropic
# ─────────────────────────────────────────────────────────────────────────────

def _anthropic_call(system: str, messages: list[dict], max_tokens: int, temperature: float) -> ModelReply:
    client = anthropic.Anthropic(api_key=settings.ANTHROPIC_API_KEY)
    response = client.messages.create(
        model=settings.ANTHROPIC_MODEL,
        max_tokens=max_tokens,
        temperature=temperature,
        system=system,
        messages=messages,
    )
    text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
    return ModelReply(
        text=text,
        input_tokens=response.usage.input_tokens,
        output_tokens=response.usage.output_tokens,
        model=settings.ANTHROPIC_MODEL,
    )


async def _anthropic_chat(system: str, messages: list[dict], max_tokens: int, temperature: float) -> ModelReply:
    return await asyncio.to_thread(_anthropic_call, system, messages, max_tokens, temperature)


# ─────────────────────────────────────────────────────────────────────────────
# Status helpers
# ─────────────────────────────────────────────────────────────────────────────

def _oracle_configured() -> bool:
    return bool(
        settings.OCI_CONFIG_FILE
        and settings.OCI_CONFIG_PROFILE
        and settings.ORACLE_GENAI_MODEL
        and settings.ORACLE_GENAI_COMPARTMENT_ID
    )


def _anthropic_configured() -> bool:
    return bool(settings.ANTHROPIC_API_KEY)


def ai_provider_name() -> str:
    if _oracle_configured():
        return f"Oracle GenAI OCI-Signed ({settings.ORACLE_GENAI_MODEL})"
    if _anthropic_configured():
        return f"Anthropic ({settings.ANTHROPIC_MODEL})"
    return "none"


def ensure_configured(trace: RequestTrace) -> None:
    """Raise a 500 at ``model:request`` when no provider is configured."""
    if not (_oracle_configured() or _anthropic_configured()):
        raise trace.at("model:request").fail(
            DependencyError, "model_missing_key", "Language model provider not configured."
        )


# ─────────────────────────────────────────────────────────────────────────────
# Public chat(): the single entry point used by the tutor pipeline
# ─────────────────────────────────────────────────────────────────────────────

async def chat(
    system: str,
    messages: list[dict],
    trace: RequestTrace,
    max_tokens: int | None = None,
    temperature: float | None = None,
) -> ModelReply:
    """
    Send one blocking chat completion.

    Provider priority:
      1. Oracle GenAI (OCI signed) when OCI config + compartment + model are set
      2. Anthropic when ANTHROPIC_API_KEY is set

    Oracle is never silently replaced by Anthropic: if it is configured and
    fails, the failure is returned to the caller.
    """
    ensure_configured(trace)
    max_tokens = max_tokens or settings.MODEL_MAX_TOKENS
    temperature = settings.MODEL_TEMPERATURE if temperature is None else temperature

    trace = trace.at("model:request").info(provider=ai_provider_name())
    try:
        if _oracle_configured():
            return await _oracle_chat(system, messages, max_tokens, temperature)
        return await _anthropic_chat(system, messages, max_tokens, temperature)
    except oci.exceptions.ServiceError as e:
        raise trace.at("model:response").fail(
            UpstreamModelError, "model_non_2xx", "Language model returned non-2xx.", str(e.message)
        ) from e
    except anthropic.APIStatusError as e:
        raise trace.at("model:response").fail(
            UpstreamModelError, "model_non_2xx", "Language model returned non-2xx.", str(e)
        ) from e
    except Exception as e:
        raise trace.fail(
            UpstreamModelError, "model_fetch_throw", "Language model request failed.", str(e)
        ) from e
