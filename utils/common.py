import inspect
import json
import re
import time
from functools import wraps
from typing import Any

import json_repair

from logger import get_logger

logger = get_logger(__name__)

_CODE_FENCE_OPEN = re.compile(r"^\s*```(?:json|JSON)?\s*")
_CODE_FENCE_CLOSE = re.compile(r"\s*```\s*$")

# LaTeX commands that begin with a JSON control-escape letter. A single
# backslash before them parses as valid JSON (\times -> tab + "imes"),
# so they are escaped before the first parse.
_CONTROL_LATEX_COMMANDS = (
    "bar|because|beta|big|bigg|binom|boldsymbol|bot|bullet|"
    "flat|forall|frac|"
    "nabla|ne|neg|neq|newline|ni|not|nu|"
    "rangle|rceil|rfloor|rho|right|rightarrow|rightleftharpoons|rm|"
    "tan|tanh|tau|text|textbf|textit|tfrac|therefore|theta|tilde|times|to|top|triangle"
)
_CONTROL_LATEX = re.compile(
    rf"(?<!\\)\\(?=(?:{_CONTROL_LATEX_COMMANDS})(?![a-zA-Z]))"
)

# Any other lone backslash before a letter is an invalid JSON escape
# (\vec, \alpha, \sqrt). \b \f \n \r \t and \uXXXX stay escapes.
_LATEX_BACKSLASH = re.compile(
    r"(?<!\\)\\(?!u[0-9a-fA-F]{4})(?![bfnrt])(?=[a-zA-Z])"
)


def timing_decorator(func):
    """Logs how long a sync or async function took."""

    if inspect.iscoroutinefunction(func):

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                elapsed = time.perf_counter() - start_time
                logger.debug(f"[TIME] {func.__name__} took {elapsed:.4f} seconds")

        return async_wrapper

    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            elapsed = time.perf_counter() - start_time
            logger.debug(f"[TIME] {func.__name__} took {elapsed:.4f} seconds")

    return wrapper


def canonical_json(value: Any) -> str:
    """Serializes value with sorted keys so equal records embed identically."""
    return json.dumps(
        value,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=str,
    )


def strip_code_fence(text: str) -> str:
    cleaned = _CODE_FENCE_OPEN.sub("", text, count=1)
    cleaned = _CODE_FENCE_CLOSE.sub("", cleaned, count=1)
    return cleaned.strip()


def escape_control_latex(text: str) -> str:
    return _CONTROL_LATEX.sub(r"\\\\", text)


def repair_latex_escapes(text: str) -> str:
    return _LATEX_BACKSLASH.sub(r"\\\\", escape_control_latex(text))


def _loads(text: str) -> Any:
    """Direct parse first, backslash repair on failure."""
    text = escape_control_latex(text)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return json.loads(repair_latex_escapes(text))


def _decode(text: str) -> Any:
    result = _loads(text)
    if isinstance(result, str):
        # Payload was JSON-encoded twice
        return _loads(result.strip())
    return result


def _repair_structure(text: str) -> Any:
    """Last resort for trailing commas, stray quotes and truncated arrays."""
    starts = [index for index in (text.find("["), text.find("{")) if index != -1]
    if not starts:
        return None
    result = json_repair.loads(repair_latex_escapes(text[min(starts):]))
    return result if isinstance(result, (list, dict)) else None


def parse_model_json(text: Any) -> Any:
    """Parses JSON produced by a language model.

    Strips a markdown fence, unwraps double-encoded payloads and repairs
    single-backslash LaTeX commands. Structurally broken JSON goes through
    json_repair. Unparseable text is logged and yields an empty list
    instead of raising.
    """
    if not text or not isinstance(text, str):
        logger.warning("Model returned an empty or non-text response")
        return []

    cleaned = strip_code_fence(text)
    try:
        return _decode(cleaned)
    except json.JSONDecodeError as e:
        logger.warning(f"Model response is not valid JSON, repairing: {e}")

    repaired = _repair_structure(cleaned)
    if repaired is not None:
        return repaired

    logger.error(f"Unparseable model response:\n{cleaned}")
    return []
