# main.py
from fastapi import FastAPI, UploadFile, File, Form, HTTPException
from fastapi.responses import FileResponse, JSONResponse
import json
import os
import uuid
from typing import Optional

from expense_filler import TemplateInvalid, fill_expense_form, list_template_fields
from field_patterns import load_pattern_overrides

app = FastAPI(title="Expense Form PDF Filler")

# Configure the folders and pattern sheet via env
TEMPLATE_DIR = os.environ.get("EXPENSE_TEMPLATE_DIR", "templates")
DEFAULT_TEMPLATE = os.environ.get("EXPENSE_DEFAULT_TEMPLATE", "business_meals_template.pdf")
OUTPUT_DIR = os.environ.get("EXPENSE_OUTPUT_DIR", "filled_pdfs")
FIELD_PATTERNS_PATH = os.environ.get("EXPENSE_FIELD_PATTERNS", "")


def _default_template_path() -> str:
    return os.path.join(TEMPLATE_DIR, DEFAULT_TEMPLATE)


def _template_file(filename: str) -> str:
    # basename only; no path components from the client
    safe = os.path.basename(filename or "")
    path = os.path.join(TEMPLATE_DIR, safe)
    if not safe or safe != filename or not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="Template not found")
    return path


def _patterns():
    if FIELD_PATTERNS_PATH:
        return load_pattern_overrides(FIELD_PATTERNS_PATH)
    return None


@app.get("/template")
async def get_template():
    """Serve the built-in template for preview."""
    path = _default_template_path()
    if not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="Built-in template not found")
    return FileResponse(path, media_type="application/pdf",
                        headers={"Content-Disposition": f"inline; filename={DEFAULT_TEMPLATE}"})


@app.post("/upload-template")
async def upload_template(file: UploadFile = File(...)):
    if file.content_type != "application/pdf":
        raise HTTPException(status_code=400, detail="File must be a PDF")

    data = await file.read()
    filename = f"template_{uuid.uuid4()}.pdf"
    try:
        os.makedirs(TEMPLATE_DIR, exist_ok=True)
        with open(os.path.join(TEMPLATE_DIR, filename), "wb") as f:
            f.write(data)
    except OSError:
        raise HTTPException(status_code=500, detail="Failed to upload template")

    return {"success": True, "path": f"/templates/{filename}"}


@app.get("/templates/{filename}")
async def get_uploaded_template(filename: str):
    """Serve a template stored by /upload-template."""
    path = _template_file(filename)
    return FileResponse(path, media_type="application/pdf",
                        headers={"Content-Disposition": f"inline; filename={os.path.basename(path)}"})


@app.post("/fill-pdf")
async def fill_pdf(
    form_data: str = Form(...),
    use_built_in_template: bool = Form(False),
    template: Optional[UploadFile] = File(None),
    template_path: Optional[str] = Form(None),
):
    """
    Fill the uploaded template (or the built-in one, or one stored earlier
    and named by `template_path`) with `form_data`, a JSON object of
    expense values. Returns the fill report: success, filledCount,
    base64 (data URI), url of the saved copy, error/warning, fieldNames and
    per-field diagnostics.
    """
    try:
        data = json.loads(form_data)
        if not isinstance(data, dict):
            raise ValueError("form_data must be a JSON object")
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Invalid form_data: {e}")

    if use_built_in_template:
        path = _default_template_path()
        try:
            with open(path, "rb") as f:
                template_bytes = f.read()
        except OSError:
            raise HTTPException(status_code=404, detail="Built-in template not found")
    elif template_path:
        path = _template_file(template_path.rsplit("/", 1)[-1])
        with open(path, "rb") as f:
            template_bytes = f.read()
    else:
        if template is None:
            raise HTTPException(status_code=400, detail="Upload a template or set use_built_in_template")
        if template.content_type != "application/pdf":
            raise HTTPException(status_code=400, detail="File must be a PDF")
        template_bytes = await template.read()

    result = fill_expense_form(template_bytes, data, output_dir=OUTPUT_DIR, patterns=_patterns())
    return JSONResponse(result.to_response())


@app.post("/fields")
async def template_fields(pdf: UploadFile = File(...)):
    """List the AcroForm field names of a template, for mapping troubleshooting."""
    if pdf.content_type != "application/pdf":
        raise HTTPException(status_code=400, detail="File must be a PDF")

    raw = await pdf.read()
    try:
        catalog = list_template_fields(raw)
    except TemplateInvalid as e:
        return {"success": False, "error": str(e), "fieldNames": []}

    return {
        "success": True,
        "fieldNames": [e.name for e in catalog],
        "fields": [
            {"name": e.name, "normalized": e.normalized, "kind": e.kind, "pages": [p + 1 for p in e.pages]}
            for e in catalog
        ],
    }


@app.get("/filled_pdfs/{filename}")
async def download_filled(filename: str):
    # basename only; no path components from the client
    safe = os.path.basename(filename)
    path = os.path.join(OUTPUT_DIR, safe)
    if safe != filename or not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path, media_type="application/pdf",
                        headers={"Content-Disposition": f"attachment; filename={safe}"})


# Simple root
@app.get("/")
async def root():
    return {"message": "Expense Form PDF Filler API. Use /fill-pdf, /fields and /template endpoints."}
