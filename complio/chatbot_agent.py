import os
import json
import logging
from typing import Any, List, Dict, Optional, Tuple
from google import genai
from google.genai import types
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

# Get API key - supports multiple env var names
API_KEY = os.environ.get("GOOGLE_CLOUD_API_KEY") or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")

# Model configuration
MODEL_NAME = os.environ.get("GEMINI_MODEL", "gemini-2.0-flash")
TEMPERATURE = float(os.environ.get("GEMINI_TEMPERATURE", "0.3"))

# Initialize client with error handling
client = None
client_error = None

try:
    if not API_KEY:
        client_error = "Missing API key. Please set GOOGLE_CLOUD_API_KEY, GEMINI_API_KEY, or GOOGLE_API_KEY in your environment."
        logger.error(client_error)
    else:
        logger.info(f"Initializing Gemini client with model: {MODEL_NAME}")
        client = genai.Client(api_key=API_KEY)
        logger.info("Gemini client initialized successfully")
except Exception as e:
    client_error = f"Failed to initialize Gemini client: {str(e)}"
    logger.error(client_error, exc_info=True)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful small-business assistant for compl.io. "
    "Be concise and practical, and provide step-by-step guidance where helpful."
)


class AIServiceError(Exception):
    """Raised when the model cannot produce a usable response."""


class AIResponseFormatError(AIServiceError):
    """The model answered but the answer held no JSON object."""


def is_configured() -> bool:
    return client is not None


def _require_client():
    if client is None:
        error_msg = client_error or "Gemini client not initialized"
        logger.error(f"Cannot call Gemini: {error_msg}")
        raise AIServiceError(error_msg)
    return client


def _build_contents(messages: List[Dict[str, str]]) -> Tuple[List[types.Content], Optional[str]]:
    """Convert chat history into content payload for the API."""
    contents: List[types.Content] = []
    system_context = None

    # Extract system message if present
    for message in messages:
        if message.get("role") == "system":
            system_context = message.get("content", "")
            break

    # Build contents from non-system messages
    for message in messages:
        role = message.get("role", "user")
        if role == "system":
            continue
        # Map roles: "user" stays "user", "assistant" becomes "model"
        api_role = "user" if role == "user" else "model"
        content_text = message.get("content", "")

        if content_text:
            contents.append(
                types.Content(
                    role=api_role,
                    parts=[types.Part.from_text(text=content_text)]
                )
            )

    logger.info(f"Built {len(contents)} content items from {len(messages)} messages")
    return contents, system_context


def _response_text(response: Any) -> str:
    if response.text:
        return response.text

    # Fallback: try to extract from candidates
    if response.candidates and response.candidates[0].content.parts:
        text_parts = [
            part.text for part in response.candidates[0].content.parts
            if getattr(part, "text", None)
        ]
        return "".join(text_parts)
    return ""


def usage_to_dict(response: Any) -> Optional[Dict[str, Optional[int]]]:
    """Token usage in the shape the dashboard expects, or None."""
    usage = getattr(response, "usage_metadata", None)
    if not usage:
        return None
    return {
        "prompt_tokens": getattr(usage, "prompt_token_count", None),
        "completion_tokens": getattr(usage, "candidates_token_count", None),
        "total_tokens": getattr(usage, "total_token_count", None),
    }


def describe_error(error_msg: str, model: str = MODEL_NAME) -> str:
    """Map a raw Gemini error to a short, actionable message for logs."""
    if "401" in error_msg or "UNAUTHENTICATED" in error_msg:
        return "Authentication Error: The API key is invalid or expired."
    elif "400" in error_msg or "INVALID_ARGUMENT" in error_msg:
        return "Invalid Request: There was an issue with the request format."
    elif "404" in error_msg or "NOT_FOUND" in error_msg:
        return f"Model Not Found: The model '{model}' is not available."
    elif "429" in error_msg or "RESOURCE_EXHAUSTED" in error_msg:
        return "Rate Limit: Too many requests."
    elif "quota" in error_msg.lower():
        return "Quota Exceeded: The API quota has been reached."
    return "Unexpected model error."


def get_chat_response(
    messages: List[Dict[str, str]],
    system_prompt: Optional[str] = None,
    temperature: Optional[float] = None,
    model: Optional[str] = None,
) -> Tuple[str, Optional[Dict[str, Optional[int]]]]:
    """
    Sends the conversation history to Gemini.

    Args:
        messages: list of {"role": "user"|"assistant"|"system", "content": "text"}
        system_prompt: instruction used when the history carries no system message
        temperature: sampling temperature, defaults to GEMINI_TEMPERATURE
        model: model override, defaults to GEMINI_MODEL

    Returns:
        (response text, usage dict or None)
    """
    gemini = _require_client()
    model_name = model or MODEL_NAME

    contents, system_context = _build_contents(messages)
    if not contents:
        raise AIServiceError("No message content to send")

    system_instruction = system_context or system_prompt or DEFAULT_SYSTEM_PROMPT
    temp = TEMPERATURE if temperature is None else temperature

    logger.info(f"Calling Gemini model: {model_name} with temperature: {temp}")
    try:
        response = gemini.models.generate_content(
            model=model_name,
            contents=contents,
            config=types.GenerateContentConfig(
                temperature=temp,
                max_output_tokens=8192,
                system_instruction=system_instruction,
            ),
        )
    except Exception as e:
        error_msg = str(e)
        logger.error(f"Error in get_chat_response: {describe_error(error_msg, model_name)} {error_msg}", exc_info=True)
        raise AIServiceError(error_msg) from e

    text = _response_text(response)
    if not text:
        logger.warning("Gemini returned no content")
    else:
        logger.info(f"Received response of length: {len(text)}")
    return text, usage_to_dict(response)


def generate_json(
    prompt: str,
    system_prompt: str,
    temperature: float = 0.2,
    model: Optional[str] = None,
) -> Tuple[Dict[str, Any], Optional[Dict[str, Optional[int]]]]:
    """
    Run a single-turn prompt in JSON mode and parse the result.

    Returns (parsed object, usage). Raises AIServiceError when the call fails
    or the output holds no JSON object.
    """
    gemini = _require_client()
    model_name = model or MODEL_NAME

    try:
        response = gemini.models.generate_content(
            model=model_name,
            contents=[types.Content(role="user", parts=[types.Part.from_text(text=prompt)])],
            config=types.GenerateContentConfig(
                temperature=temperature,
                system_instruction=system_prompt,
                response_mime_type="application/json",
            ),
        )
    except Exception as e:
        error_msg = str(e)
        logger.error(f"Error in generate_json: {describe_error(error_msg, model_name)} {error_msg}", exc_info=True)
        raise AIServiceError(error_msg) from e

    text = _response_text(response)
    parsed = extract_json_from_response(text)
    if parsed is None:
        raise AIResponseFormatError("Model returned no JSON object")
    return parsed, usage_to_dict(response)


def transcribe_image(content: bytes, mime_type: str) -> str:
    """Extract visible text from an image with Gemini vision."""
    gemini = _require_client()

    try:
        response = gemini.models.generate_content(
            model=MODEL_NAME,
            contents=[
                types.Content(
                    role="user",
                    parts=[
                        types.Part.from_text(
                            text="Extract all text from this image. If this is a document, "
                                 "provide a clear transcription of all visible text."
                        ),
                        types.Part.from_bytes(data=content, mime_type=mime_type),
                    ],
                )
            ],
            config=types.GenerateContentConfig(temperature=0.0, max_output_tokens=4000),
        )
    except Exception as e:
        logger.error(f"Error transcribing image: {e}", exc_info=True)
        raise AIServiceError(str(e)) from e

    return _response_text(response)


def extract_json_from_response(response_text: str) -> Optional[Dict]:
    """
    Attempts to parse JSON from the AI's response.

    Args:
        response_text: The response text from Gemini

    Returns:
        Parsed JSON dict or None if not found/invalid
    """
    if not response_text:
        return None

    try:
        # Look for JSON in the response
        start = response_text.find("{")
        end = response_text.rfind("}") + 1

        if start != -1 and end > start:
            json_str = response_text[start:end]
            parsed = json.loads(json_str)
            logger.info(f"Successfully extracted JSON with keys: {list(parsed.keys())}")
            return parsed

        logger.info("No JSON found in response")
        return None
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse JSON from response: {str(e)}")
        return None
