"""Core pipeline for md2tracker."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from .adf import DocumentBuilder, empty_document, sanitize_document
from .details import convert_details_to_expand_syntax, convert_details_to_plus_fence, remove_code_sample_wrappers
from .reader import adf_to_markdown
from .wiki import sanitize_wiki_markup

LOG = logging.getLogger("md2tracker")

EXIT_INVALID_ARGS = 6
EXIT_OUTPUT = 7

LOG_FILE_ENV = "MD2TRACKER_LOG_FILE"
LOG_SEPARATOR = "=" * 32

TARGET_ADF = "adf"
TARGET_LINEAR = "linear"
TARGET_MARKDOWN = "markdown"
TARGETS = (TARGET_ADF, TARGET_LINEAR, TARGET_MARKDOWN)

DiagnosticSink = Callable[[str, str], None]


@dataclass
class ConversionConfig:
    target: str
    sanitize_wiki: bool = False
    log_file: Optional[Path] = None
    verbose: bool = False
    debug: bool = False


LOG_FORMAT = "%(levelname)s: %(message)s"


def _resolve_log_level(verbose: bool, debug: bool) -> int:
    if debug:
        return logging.DEBUG
    return logging.INFO if verbose else logging.WARNING


def setup_logging(verbose: bool, debug: bool) -> None:
    """Send md2tracker records to one stderr handler at the requested level."""
    level = _resolve_log_level(verbose, debug)
    LOG.setLevel(level)
    LOG.propagate = False
    if not LOG.handlers:
        LOG.addHandler(logging.StreamHandler())
    formatter = logging.Formatter(LOG_FORMAT)
    for handler in LOG.handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)


def write_output_text(path: Path, text: str) -> None:
    """Write ``text`` through a sibling temp file so a failed write keeps the old output."""
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_name(f".{path.name}.tmp")
    staging.write_text(text, encoding="utf-8", newline="\n")
    staging.replace(path)


def timestamped_log_path(path: Path, now: Optional[datetime] = None) -> Path:
    """``debug.log`` -> ``debug-YYYYMMDD-HHMMSS.log`` next to the original path."""
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return path.with_name(f"{path.stem}-{stamp}{path.suffix}")


class ConversionLogFile:
    """Diagnostic sink appending labelled conversion records to a timestamped file."""

    def __init__(self, path: Path, now: Optional[datetime] = None) -> None:
        self.path = timestamped_log_path(Path(path).expanduser(), now)

    def __call__(self, label: str, content: str) -> None:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        entry = f"{LOG_SEPARATOR}\n[{timestamp}] CONVERSION {label}\n{LOG_SEPARATOR}\n{label}:\n{content}\n\n"
        try:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(entry)
        except OSError as exc:
            LOG.debug("Unable to append conversion log %s: %s", self.path, exc)


def diagnostic_sink_from_env(environ: Optional[Mapping[str, str]] = None) -> Optional[DiagnosticSink]:
    env = os.environ if environ is None else environ
    value = (env.get(LOG_FILE_ENV) or "").strip()
    if not value:
        return None
    return ConversionLogFile(Path(value))


def _emit(sink: Optional[DiagnosticSink], label: str, content: str) -> None:
    if sink is None:
        return
    try:
        sink(label, content)
    except Exception as exc:
        LOG.debug("Diagnostic sink failed for %s record: %s", label, exc)


def markdown_to_adf(
    text: Optional[str],
    sink: Optional[DiagnosticSink] = None,
    id_factory: Optional[Callable[[], str]] = None,
) -> Dict[str, Any]:
    """Convert Markdown with ``<details>`` blocks into an ADF ``doc`` dict."""
    if not text:
        return empty_document()
    _emit(sink, "INPUT", text)
    expanded = convert_details_to_expand_syntax(text) or ""
    doc = sanitize_document(DocumentBuilder().build(expanded), id_factory=id_factory)
    result = doc.to_dict()
    _emit(sink, "OUTPUT", json.dumps(result, ensure_ascii=False, indent=2))
    return result


def markdown_to_linear(text: Optional[str], sink: Optional[DiagnosticSink] = None) -> str:
    """Convert ``<details>`` blocks into ``+++ Title`` fences, unwrapping code samples."""
    if not text:
        return ""
    _emit(sink, "INPUT", text)
    converted = remove_code_sample_wrappers(text) or ""
    converted = convert_details_to_plus_fence(converted) or ""
    _emit(sink, "OUTPUT", converted)
    return converted


def run_conversion(text: str, config: ConversionConfig) -> str:
    """Run the configured conversion and return its serialized result."""
    if config.target not in TARGETS:
        raise ValueError(f"Unknown target: {config.target}")

    if config.target == TARGET_MARKDOWN:
        try:
            adf = json.loads(text) if text.strip() else None
        except json.JSONDecodeError as exc:
            raise ValueError(f"Input is not valid ADF JSON: {exc}") from exc
        return adf_to_markdown(adf)

    sink = ConversionLogFile(config.log_file) if config.log_file else diagnostic_sink_from_env()
    if config.sanitize_wiki:
        text = sanitize_wiki_markup(text)
        LOG.info("Wiki markup sanitized before conversion")

    if config.target == TARGET_ADF:
        LOG.info("Converting Markdown to ADF")
        return json.dumps(markdown_to_adf(text, sink), ensure_ascii=False, indent=2) + "\n"

    LOG.info("Converting Markdown to plus-fence text")
    return markdown_to_linear(text, sink)
