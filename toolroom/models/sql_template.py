"""
SQL Template Store.

Ancillary reports (open job orders and similar) are kept as parameterized
SQL text in the database, addressed by a numeric id, so that plant IT can
adjust them without a deployment. Templates must only reference named bind
parameters (``:param``); values are never interpolated into the text.
"""

from datetime import datetime, timezone

from toolroom.models import db


class SqlTemplate(db.Model):
    __tablename__ = "sql_templates"

    sql_no = db.Column(db.Integer, primary_key=True, autoincrement=False)
    sql_stmt = db.Column(db.Text, nullable=False)
    description = db.Column(db.String(200), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<SqlTemplate {self.sql_no}>"
