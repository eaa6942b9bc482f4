from __future__ import annotations

import logging
from typing import Any

from actions.company_repo import require_company
from actions.helpers import as_dict, require_str
from actions.workflow import add_process
from services.form_generator import FormGenerator, build_generation_request
from services.record_store import RecordStore
from utils import AuthContext, ValidationError, new_doc_id
from workflow_types import GeneratedForm, OnboardingProcess


log = logging.getLogger("workflow")


def generate_application_form(
    records: RecordStore, forms: FormGenerator, company_id: str, options: Any
) -> OnboardingProcess:
    """Ask the generator for a form and save it as a new onboarding process."""
    if options is not None and not isinstance(options, dict):
        raise ValidationError("Options must be an object")
    opts = options or {}
    company = require_company(records, company_id)

    request_payload = build_generation_request(opts, company_name=str(company.get("name") or ""))
    generated = forms.generate(request_payload)

    name = str(opts.get("processName") or "").strip() or generated["name"]
    process = OnboardingProcess(
        id=new_doc_id(),
        name=name[:200],
        application_form=GeneratedForm(id=new_doc_id(), name=generated["name"], fields=tuple(generated["fields"])),
    )
    add_process(records, company["id"], process)
    log.info("company=%s generated form with %d field(s)", company["id"], len(generated["fields"]))
    return process


def handle_application_form_generate(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    process = generate_application_form(
        backend.records, backend.forms, require_str(d, "companyId", "company id"), d.get("options")
    )
    return process.to_dict()
