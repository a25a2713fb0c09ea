import asyncio
import io
import logging
import re
from collections.abc import Mapping
from collections.abc import Sequence
from datetime import date
from uuid import uuid4

from docx import Document
from docx.shared import Mm
from docxtpl import DocxTemplate
from docxtpl import InlineImage
from docxtpl import Listing
from jinja2 import Environment
from jinja2 import TemplateError
from jinja2 import TemplateSyntaxError
from jinja2 import Undefined
from jinja2 import UndefinedError
from jinja2.ext import Extension

from app.core.config import settings
from app.core.exceptions import AssemblyError
from app.core.exceptions import PhotoBindingError
from app.core.exceptions import SubstitutionError
from app.core.exceptions import TemplateLoadError
from app.models.field_schema import REPORT_FIELDS
from app.models.field_schema import slot_token
from app.models.report_models import AssembledDocument
from app.models.report_models import DocumentReference
from app.models.report_models import EnhancementResult
from app.models.report_models import GenerationOptions
from app.models.report_models import ReportData
from app.models.report_models import SlotBinding
from app.services import google_docs
from app.services.template_store import LoadedTemplate
from app.services.template_store import iter_paragraphs

# Configure module logger
logger = logging.getLogger(__name__)

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# Root name of a ``{{ ... }}`` expression, after docxtpl has merged the tag text
_EXPRESSION_RE = re.compile(r"\{\{-?\s*([A-Za-z_][A-Za-z0-9_]*)[^{}]*?\}\}")
_UNRESOLVED_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_.]*)\s*\}\}")


class PassthroughTokens(Extension):
    """Keeps ``{{ ... }}`` expressions whose root name is not in the render context as literal text.

    The expression is wrapped in a raw block before compilation, so it comes
    out exactly as written in the template, whitespace and attribute access
    included. Set ``environment.context_names`` before rendering.
    """

    def __init__(self, environment: Environment):
        super().__init__(environment)
        environment.extend(context_names=frozenset())

    def preprocess(self, source: str, name: str | None, filename: str | None = None) -> str:
        known = self.environment.context_names

        def keep_literal(match: re.Match) -> str:
            if match.group(1) in known:
                return match.group(0)
            return "{% raw %}" + match.group(0) + "{% endraw %}"

        return _EXPRESSION_RE.sub(keep_literal, source)


class PassthroughUndefined(Undefined):
    """Renders a missing value back as ``{{name}}`` instead of an empty string.

    Attribute and item lookups on a missing value stay undefined and carry
    the dotted name, so they never raise while rendering.
    """

    __slots__ = ()

    def _child(self, key: object) -> "PassthroughUndefined":
        base = self._undefined_name
        return PassthroughUndefined(name=f"{base}.{key}" if base else str(key))

    def __getattr__(self, name: str) -> "PassthroughUndefined":
        if name[:2] == "__":
            raise AttributeError(name)
        return self._child(name)

    def __getitem__(self, key: object) -> "PassthroughUndefined":
        return self._child(key)

    def __str__(self) -> str:
        if self._undefined_name is None:
            return ""
        return "{{" + self._undefined_name + "}}"


def report_filename(day: date | None = None) -> str:
    return f"Report_{(day or date.today()).isoformat()}.docx"


def build_substitution_mapping(
    report_data: ReportData,
    enhancement_results: Sequence[EnhancementResult] | None,
    title: str | None = None,
    day: date | None = None,
) -> dict[str, str]:
    """Final text of every scalar placeholder.

    The enhanced text wins when enhancement ran for a field, then the raw
    value, then the configured "not provided" text.
    """
    day = day or date.today()
    enhanced = {r.field_name: r.final_text for r in enhancement_results or ()}
    mapping: dict[str, str] = {}
    for spec in REPORT_FIELDS:
        if spec.placeholder in enhanced:
            mapping[spec.placeholder] = enhanced[spec.placeholder]
            continue
        raw = report_data.raw_value(spec)
        mapping[spec.placeholder] = raw if raw is not None else settings.not_provided_text
    mapping["current_date"] = day.isoformat()
    mapping["report_title"] = title or f"Report_{day.isoformat()}"
    return mapping


def check_bindings(bindings: Mapping[int, SlotBinding], slot_count: int) -> None:
    expected = set(range(1, slot_count + 1))
    actual = set(bindings)
    if actual != expected:
        extra = sorted(actual - expected)
        missing = sorted(expected - actual)
        raise PhotoBindingError(
            f"Photo bindings do not match the template's {slot_count} slots "
            f"(unexpected: {extra or 'none'}, missing: {missing or 'none'})"
        )
    for index, binding in bindings.items():
        if binding.index != index:
            raise PhotoBindingError(f"Binding stored under slot {index} is for slot {binding.index}")


def _value(text: str):
    return Listing(text) if "\n" in text else text


def _render_sync(
    template: LoadedTemplate,
    mapping: dict[str, str],
    bindings: Mapping[int, SlotBinding],
    include_photos_inline: bool,
    rid: str,
) -> tuple[bytes, list[str]]:
    try:
        tpl = DocxTemplate(io.BytesIO(template.content))
    except Exception as e:
        raise TemplateLoadError(f"Template could not be opened for rendering: {template.path}") from e

    context: dict[str, object] = {name: _value(text) for name, text in mapping.items()}
    for index, binding in bindings.items():
        context[slot_token(index, "exists")] = binding.exists
        if not binding.exists:
            context[slot_token(index, "image")] = ""
            context[slot_token(index, "caption")] = ""
            context[slot_token(index, "filename")] = ""
            continue
        if include_photos_inline and binding.image:
            context[slot_token(index, "image")] = InlineImage(
                tpl, image_descriptor=io.BytesIO(binding.image), width=Mm(settings.photo_width_mm)
            )
        else:
            context[slot_token(index, "image")] = binding.reference
        context[slot_token(index, "caption")] = _value(binding.caption)
        context[slot_token(index, "filename")] = binding.filename

    jinja_env = Environment(undefined=PassthroughUndefined, extensions=[PassthroughTokens])
    jinja_env.context_names = frozenset(context)
    try:
        tpl.render(context, jinja_env=jinja_env, autoescape=True)
    except TemplateSyntaxError as e:
        logger.error("[%s] Template syntax error at line %s: %s", rid, e.lineno, e.message)
        raise SubstitutionError(f"Template syntax error: {e.message}") from e
    except UndefinedError as e:
        logger.error("[%s] Undefined value used in template expression: %s", rid, e)
        raise SubstitutionError(f"Undefined template value: {e}") from e
    except TemplateError as e:
        raise SubstitutionError(f"Template rendering failed: {e}") from e

    bio = io.BytesIO()
    tpl.save(bio)
    content = bio.getvalue()

    rendered = Document(io.BytesIO(content))
    unresolved: list[str] = []
    for paragraph in iter_paragraphs(rendered):
        for name in _UNRESOLVED_RE.findall(paragraph.text):
            if name not in unresolved:
                unresolved.append(name)
    return content, unresolved


async def render_docx(
    report_data: ReportData,
    enhancement_results: Sequence[EnhancementResult] | None,
    slot_bindings: Mapping[int, SlotBinding],
    template: LoadedTemplate,
    options: GenerationOptions,
    request_id: str | None = None,
) -> AssembledDocument:
    """Merge the field values and photo slots into *template* and return the DOCX bytes.

    The template itself is never modified; every call renders a new document
    from the cached template bytes.

    Raises:
        SubstitutionError: the template still holds malformed known tokens, or
            its tag syntax is invalid.
        PhotoBindingError: the bindings do not cover exactly the template's slots.
        TemplateLoadError: the template bytes cannot be opened.
    """
    rid = request_id or str(uuid4())
    profile = template.profile
    if profile.malformed_tokens:
        raise SubstitutionError(
            "Template contains malformed placeholders: " + ", ".join(profile.malformed_tokens),
            tokens=list(profile.malformed_tokens),
        )
    check_bindings(slot_bindings, profile.slot_count)

    day = date.today()
    mapping = build_substitution_mapping(report_data, enhancement_results, options.title, day)
    populated = sum(1 for b in slot_bindings.values() if b.exists)
    logger.info(
        "[%s] Assembling report from %s (%d photos, inline=%s)",
        rid,
        template.path,
        populated,
        options.include_photos_inline,
    )

    try:
        content, unresolved = await asyncio.to_thread(
            _render_sync, template, mapping, slot_bindings, options.include_photos_inline, rid
        )
    except AssemblyError:
        raise
    except Exception as err:
        logger.exception("[%s] Report rendering failed", rid)
        raise AssemblyError("Unexpected error while rendering the report document") from err

    if unresolved:
        logger.warning("[%s] Unresolved placeholders left in report: %s", rid, ", ".join(unresolved))
    logger.info("[%s] Report ready (%d bytes)", rid, len(content))
    return AssembledDocument(
        content=content,
        filename=report_filename(day),
        media_type=DOCX_MEDIA_TYPE,
        unresolved_placeholders=unresolved,
    )


async def assemble(
    report_data: ReportData,
    enhancement_results: Sequence[EnhancementResult] | None,
    slot_bindings: Mapping[int, SlotBinding],
    template: LoadedTemplate,
    options: GenerationOptions,
    request_id: str | None = None,
) -> AssembledDocument | DocumentReference:
    """Produce the finished report in the requested output mode.

    ``docx`` returns the bytes. ``google_docs`` renders the same bytes first
    and then hands them to Google Drive for conversion, returning the link.
    """
    document = await render_docx(report_data, enhancement_results, slot_bindings, template, options, request_id)
    if options.output_mode == "docx":
        return document

    title = options.title or document.filename.removesuffix(".docx")
    reference = await google_docs.upload_as_google_doc(document.content, title, request_id=request_id)
    return reference.model_copy(update={"unresolved_placeholders": document.unresolved_placeholders})
