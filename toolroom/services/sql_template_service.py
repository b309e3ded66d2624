"""
SQL Template Store — resolve a template id to SQL text and run it.

Templates are executed through ``sqlalchemy.text`` with named binds only.
Bind values the template does not reference are dropped; a bind the
template needs but the caller did not supply is a ValidationError.
"""

import logging
import re

from flask import current_app
from sqlalchemy import text

from toolroom.core.exceptions import NotFoundError, ValidationError
from toolroom.models import db
from toolroom.models.sql_template import SqlTemplate
from toolroom.utils.helpers import require_fields, storage_guard

logger = logging.getLogger(__name__)

# ":name" but not the "::" cast operator
_BIND_RE = re.compile(r"(?<![:\w]):([A-Za-z_]\w*)")


def bind_names(sql: str) -> set[str]:
    return set(_BIND_RE.findall(sql))


def get_template(sql_no: int) -> SqlTemplate:
    with storage_guard("get_template", sql_no=sql_no):
        template = db.session.get(SqlTemplate, sql_no)
    if template is None:
        raise NotFoundError(resource="SqlTemplate", resource_id=sql_no)
    return template


def execute_template(sql_no: int, **binds) -> list[dict]:
    """Run template ``sql_no`` and return its rows as dicts."""
    template = get_template(sql_no)
    needed = bind_names(template.sql_stmt)
    missing = sorted(needed - set(binds))
    if missing:
        raise ValidationError(
            f"Template {sql_no} requires parameters: {', '.join(missing)}",
            details={name: "required" for name in missing},
        )
    params = {name: binds[name] for name in needed}

    with storage_guard("execute_template", sql_no=sql_no):
        result = db.session.execute(text(template.sql_stmt), params)
        rows = [dict(row._mapping) for row in result]
    logger.debug("Template %s returned %d rows", sql_no, len(rows), extra={"sql_no": sql_no})
    return rows


def open_jobs(diecut_id: str, diecut_type: str | None = None, diecut_sn: str | None = None) -> list[dict]:
    """Open job orders that can use the given diecut (template ``open_jobs``)."""
    require_fields(diecutId=diecut_id)
    sql_no = current_app.config["SQL_TEMPLATE_IDS"]["open_jobs"]
    return execute_template(
        sql_no,
        diecut_id=diecut_id,
        diecut_type=diecut_type,
        diecut_sn=diecut_sn,
    )
