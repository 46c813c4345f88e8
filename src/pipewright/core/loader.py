"""
pipewright.core.loader - Pipeline Definition Parser
=====================================================

Turns a YAML pipeline definition (in the familiar `.gitlab-ci.yml` shape)
into a validated Pipeline model.

Definition Shape:
    stages: [build, test, deploy]
    variables: {NODE_ENV: production}
    default: {image: node:20, before_script: [...], after_script: [...]}

    build:                          # every other mapping is a job
      stage: build
      image: node:20
      script: [npm ci, npm run build]
      artifacts: {paths: [frontend], expire_in: 1 hour}

    .template: {...}                # keys starting with "." are ignored

Only structural problems are reported here (wrong types, unknown keywords,
bad durations). Graph rules such as "dependencies may only point backward"
belong to orchestration/stage_graph.py.

Usage:
    >>> pipeline = load_pipeline(".pipewright.yml")
    >>> pipeline = parse_pipeline(yaml.safe_load(text), name="frontend")
"""

from __future__ import annotations

import math
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from pipewright.core.exceptions import ValidationError
from pipewright.core.models import MAX_DURATION, Job, Pipeline


# =============================================================================
# Constants
# =============================================================================
DEFAULT_STAGES = ("build", "test", "deploy")

# Top-level keys that are not jobs.
RESERVED_KEYS = frozenset({
    "stages",
    "variables",
    "default",
    "image",
    "before_script",
    "after_script",
})

# Keywords a job mapping may use.
JOB_KEYWORDS = frozenset({
    "stage",
    "image",
    "script",
    "before_script",
    "after_script",
    "variables",
    "artifacts",
    "dependencies",
    "needs",
    "only",
    "except",
    "allow_failure",
    "timeout",
    "publish",
})

_SECONDS_PER_UNIT: dict[str, float] = {}
for _names, _seconds in (
    (("s", "sec", "secs", "second", "seconds"), 1),
    (("m", "min", "mins", "minute", "minutes"), 60),
    (("h", "hr", "hrs", "hour", "hours"), 3600),
    (("d", "day", "days"), 86400),
    (("w", "wk", "wks", "week", "weeks"), 7 * 86400),
    (("mo", "mos", "month", "months"), 30 * 86400),
    (("y", "yr", "yrs", "year", "years"), 365 * 86400),
):
    for _name in _names:
        _SECONDS_PER_UNIT[_name] = _seconds

_DURATION_TOKEN = re.compile(r"(\d+(?:\.\d+)?)\s*([a-z]*)")


# =============================================================================
# Durations
# =============================================================================
def parse_duration(value: Union[str, int, float]) -> timedelta:
    """Parse a human duration such as "1 hour", "2h30m" or "3 days and 4 hrs".

    A bare number is a number of seconds.

    Raises:
        ValueError: If the text is not a duration or exceeds MAX_DURATION.
    """
    if isinstance(value, bool):
        raise ValueError(f"not a duration: {value!r}")
    if isinstance(value, (int, float)):
        return _bounded(value, value)

    text = re.sub(r"\band\b", " ", value.strip().lower().replace(",", " "))
    total = 0.0
    position = 0
    matched = False
    for match in _DURATION_TOKEN.finditer(text):
        if text[position:match.start()].strip():
            raise ValueError(f"not a duration: {value!r}")
        amount, unit = float(match.group(1)), match.group(2) or "s"
        if unit not in _SECONDS_PER_UNIT:
            raise ValueError(f"unknown duration unit {unit!r} in {value!r}")
        total += amount * _SECONDS_PER_UNIT[unit]
        position = match.end()
        matched = True

    if not matched or text[position:].strip():
        raise ValueError(f"not a duration: {value!r}")
    return _bounded(total, value)


def _bounded(seconds: float, value: Union[str, int, float]) -> timedelta:
    if abs(seconds) > MAX_DURATION.total_seconds() or not math.isfinite(seconds):
        raise ValueError(f"duration {value!r} exceeds the maximum of 100 years")
    return timedelta(seconds=seconds)


# =============================================================================
# Field Normalizers
# =============================================================================
def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _string_list(value: Any, location: str) -> list[str]:
    """Accept a string or a (one level nested) list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        lines: list[str] = []
        for item in value:
            if isinstance(item, list):
                lines.extend(_string_list(item, location))
            elif isinstance(item, (str, int, float)) and not isinstance(item, bool):
                lines.append(str(item))
            else:
                raise ValidationError(
                    message=f"Expected a string, got {type(item).__name__}",
                    location=location,
                )
        return lines
    raise ValidationError(
        message=f"Expected a string or a list of strings, got {type(value).__name__}",
        location=location,
    )


def _variables(value: Any, location: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(message="variables must be a mapping", location=location)
    variables: dict[str, str] = {}
    for key, item in value.items():
        # Long form: {VAR: {value: "...", description: "..."}}
        if isinstance(item, dict):
            item = item.get("value", "")
        variables[str(key)] = _stringify(item)
    return variables


def _image(value: Any, location: str) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("name")
    if not isinstance(value, str) or not value:
        raise ValidationError(message="image must be a non-empty string", location=location)
    return value


def _artifacts(value: Any, location: str) -> Optional[dict[str, Any]]:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError(message="artifacts must be a mapping", location=location)

    spec: dict[str, Any] = {"paths": _string_list(value.get("paths"), f"{location}.paths")}
    expire_in = value.get("expire_in")
    if expire_in is not None:
        if isinstance(expire_in, str) and expire_in.strip().lower() == "never":
            spec["keep_forever"] = True
        else:
            try:
                spec["expire_in"] = parse_duration(expire_in)
            except ValueError as e:
                raise ValidationError(
                    message=str(e),
                    location=f"{location}.expire_in",
                    error_code="INVALID_DURATION",
                ) from e
    return spec


def _dependencies(job: dict[str, Any], location: str) -> Optional[list[str]]:
    """Merge ``dependencies`` and ``needs`` into one ordered list."""
    if "dependencies" not in job and "needs" not in job:
        return None

    names = _string_list(job.get("dependencies"), f"{location}.dependencies")
    needs = job.get("needs") or []
    if not isinstance(needs, list):
        raise ValidationError(message="needs must be a list", location=f"{location}.needs")
    for need in needs:
        if isinstance(need, dict):
            need = need.get("job")
        if not isinstance(need, str):
            raise ValidationError(
                message="needs entries must be job names",
                location=f"{location}.needs",
            )
        names.append(need)

    return list(dict.fromkeys(names))


def _ref_patterns(value: Any, location: str) -> list[str]:
    if isinstance(value, dict):
        value = value.get("refs")
    return _string_list(value, location)


def _trigger(job: dict[str, Any], location: str) -> Optional[dict[str, Any]]:
    if "only" not in job and "except" not in job:
        return None
    return {
        "only": _ref_patterns(job.get("only"), f"{location}.only"),
        "except": _ref_patterns(job.get("except"), f"{location}.except"),
    }


def _timeout(value: Any, location: str) -> Optional[int]:
    if value is None:
        return None
    try:
        seconds = int(parse_duration(value).total_seconds())
    except ValueError as e:
        raise ValidationError(
            message=str(e),
            location=location,
            error_code="INVALID_DURATION",
        ) from e
    return max(seconds, 1)


def _publish(value: Any, location: str) -> Optional[dict[str, Any]]:
    if value is None:
        return None
    if isinstance(value, str):
        value = {"image": value}
    if not isinstance(value, dict):
        raise ValidationError(message="publish must be a string or mapping", location=location)
    return {"image": _stringify(value.get("image", ""))}


# =============================================================================
# Job Parsing
# =============================================================================
def _parse_job(name: str, body: Any, defaults: dict[str, Any]) -> Job:
    location = f"jobs.{name}"
    if not isinstance(body, dict):
        raise ValidationError(message=f"Job '{name}' must be a mapping", location=location)

    unknown = sorted(set(body) - JOB_KEYWORDS)
    if unknown:
        raise ValidationError(
            message=f"Job '{name}' uses unknown keywords: {', '.join(unknown)}",
            location=location,
            error_code="UNKNOWN_KEYWORD",
            details={"keywords": unknown},
        )

    if "script" not in body:
        raise ValidationError(message=f"Job '{name}' has no script", location=f"{location}.script")

    fields: dict[str, Any] = {
        "name": name,
        "stage": _stringify(body.get("stage", "test")),
        "image": _image(body.get("image", defaults.get("image")), f"{location}.image"),
        "script": _string_list(body["script"], f"{location}.script"),
        "before_script": _string_list(
            body.get("before_script", defaults.get("before_script")),
            f"{location}.before_script",
        ),
        "after_script": _string_list(
            body.get("after_script", defaults.get("after_script")),
            f"{location}.after_script",
        ),
        "variables": _variables(body.get("variables"), f"{location}.variables"),
        "artifacts": _artifacts(body.get("artifacts"), f"{location}.artifacts"),
        "dependencies": _dependencies(body, location),
        "trigger": _trigger(body, location),
        "allow_failure": bool(body.get("allow_failure", False)),
        "timeout_seconds": _timeout(body.get("timeout"), f"{location}.timeout"),
        "publish": _publish(body.get("publish"), f"{location}.publish"),
    }

    try:
        return Job(**fields)
    except PydanticValidationError as e:
        raise _wrap_pydantic_error(e, location) from e


def _wrap_pydantic_error(error: PydanticValidationError, location: str) -> ValidationError:
    problems = [
        f"{'.'.join(str(part) for part in item['loc']) or '<root>'}: {item['msg']}"
        for item in error.errors()
    ]
    return ValidationError(
        message="; ".join(problems),
        location=location,
        details={"errors": problems},
    )


# =============================================================================
# Public API
# =============================================================================
def parse_pipeline(data: Any, name: str = "pipeline") -> Pipeline:
    """Build a Pipeline from an already-parsed YAML document.

    Args:
        data: The YAML document (must be a mapping).
        name: Pipeline name used to group Runs.

    Returns:
        The validated Pipeline.

    Raises:
        ValidationError: If the document does not describe a pipeline.
    """
    if not isinstance(data, dict):
        raise ValidationError(message="Pipeline definition must be a mapping")

    defaults: dict[str, Any] = {
        key: data[key] for key in ("image", "before_script", "after_script") if key in data
    }
    default_section = data.get("default") or {}
    if not isinstance(default_section, dict):
        raise ValidationError(message="default must be a mapping", location="default")
    defaults.update(default_section)

    jobs: list[Job] = []
    for key, body in data.items():
        key = str(key)
        if key in RESERVED_KEYS or key.startswith("."):
            continue
        jobs.append(_parse_job(key, body, defaults))

    if not jobs:
        raise ValidationError(message="Pipeline defines no jobs", error_code="NO_JOBS")

    if "stages" in data:
        stages = _string_list(data["stages"], "stages")
    else:
        used = {job.stage for job in jobs}
        stages = [stage for stage in DEFAULT_STAGES if stage in used]
    if not stages:
        raise ValidationError(
            message="Pipeline declares no stages",
            location="stages",
            error_code="NO_STAGES",
        )

    try:
        return Pipeline(
            name=name,
            stages=stages,
            jobs=jobs,
            variables=_variables(data.get("variables"), "variables"),
        )
    except PydanticValidationError as e:
        raise _wrap_pydantic_error(e, "pipeline") from e


def load_pipeline(path: Union[str, Path], name: Optional[str] = None) -> Pipeline:
    """Read and parse a pipeline definition file.

    Args:
        path: Path to the YAML definition.
        name: Pipeline name. Defaults to the file name without extension.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValidationError: If the YAML is malformed or not a pipeline.
    """
    definition_path = Path(path)
    if not definition_path.exists():
        raise FileNotFoundError(f"Pipeline definition not found: {path}")

    try:
        with open(definition_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValidationError(
            message=f"Invalid YAML in {path}: {e}",
            error_code="INVALID_YAML",
        ) from e

    pipeline_name = name or definition_path.stem.lstrip(".")
    return parse_pipeline(data, name=pipeline_name or "pipeline")
