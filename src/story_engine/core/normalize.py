from __future__ import annotations

import ast
import json
import math
import re
from datetime import datetime, timezone
from typing import Any

from .errors import OracleResponseError


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_json_dict(text: str | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        data = json.loads(text)
    except Exception:
        return {}
    return data if isinstance(data, dict) else {}


def dump_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=True, separators=(",", ":"))


def extract_json(text: str) -> str | None:
    text = text.strip()
    if "```" in text:
        text = re.sub(r"```\w*", "", text).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]


def _coerce_python_dict(text: str) -> dict[str, Any] | None:
    try:
        fixed = re.sub(r"\bnull\b", "None", text)
        fixed = re.sub(r"\btrue\b", "True", fixed)
        fixed = re.sub(r"\bfalse\b", "False", fixed)
        result = ast.literal_eval(fixed)
        if isinstance(result, dict):
            return result
    except Exception:
        return None
    return None


def parse_oracle_json(text: str | None) -> dict[str, Any]:
    """Parse an oracle reply into a JSON object.

    Tolerates markdown fences, leading chatter and Python-style literals.
    Raises ``OracleResponseError`` when no object can be recovered.
    """
    if not text or not text.strip():
        raise OracleResponseError("empty response")
    candidate = extract_json(text)
    if candidate is None:
        raise OracleResponseError("no JSON object in response")
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        coerced = _coerce_python_dict(candidate)
        if coerced is None:
            raise OracleResponseError(f"malformed JSON: {exc}") from exc
        data = coerced
    if not isinstance(data, dict):
        raise OracleResponseError("response is not a JSON object")
    return data


def coerce_str(value: object, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def coerce_number(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        return value
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        if math.isnan(parsed):
            return None
        return int(parsed) if parsed.is_integer() else parsed
    return None


def coerce_int(value: object, default: int = 0) -> int:
    parsed = coerce_number(value)
    if parsed is None:
        return default
    return int(parsed)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_coordinate(value: object, upper: int = 9) -> int:
    parsed = coerce_number(value)
    if parsed is None:
        return 0
    return int(clamp(round_half_up(parsed), 0, upper))


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat() + "Z"


def parse_timestamp(value: object) -> datetime | None:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds.
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except Exception:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def dedupe_casefold(values: list[str], limit: int | None = None) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for entry in values:
        value = coerce_str(entry)
        if not value:
            continue
        key = value.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(value)
        if limit is not None and len(out) == limit:
            break
    return out
