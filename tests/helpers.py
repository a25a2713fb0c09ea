import io

from docx import Document

from app.models.field_schema import REPORT_FIELDS


def write_template(path, slot_count: int = 20, scalars=None, extra=(), split=()):
    """Build a report template with python-docx and save it to *path*.

    ``scalars`` defaults to every known field placeholder. ``extra`` adds raw
    paragraph texts. ``split`` adds paragraphs whose text is spread over
    several runs, one run per list item.
    """
    doc = Document()
    doc.add_paragraph("{{report_title}}")
    doc.add_paragraph("Report date: {{current_date}}")
    names = [spec.placeholder for spec in REPORT_FIELDS] if scalars is None else scalars
    for name in names:
        doc.add_paragraph(f"{name}: {{{{{name}}}}}")
    for text in extra:
        doc.add_paragraph(text)
    for pieces in split:
        paragraph = doc.add_paragraph()
        for piece in pieces:
            paragraph.add_run(piece)
    for i in range(1, slot_count + 1):
        doc.add_paragraph(f"{{%p if slot_{i}_exists %}}")
        doc.add_paragraph(f"Photo {i}: {{{{slot_{i}_filename}}}}")
        doc.add_paragraph(f"{{{{slot_{i}_image}}}}")
        doc.add_paragraph(f"{{{{slot_{i}_caption}}}}")
        doc.add_paragraph("{%p endif %}")
    doc.save(str(path))
    return path


def document_text(content: bytes) -> str:
    doc = Document(io.BytesIO(content))
    return "\n".join(p.text for p in doc.paragraphs)
