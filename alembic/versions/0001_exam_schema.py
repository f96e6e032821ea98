"""exam extraction schema

Revision ID: 0001_exam_schema
Revises:
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0001_exam_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "patients",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("tax_id", sa.String(length=11), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_patients_name", "patients", ["name"], unique=False)
    op.create_index("ix_patients_tax_id", "patients", ["tax_id"], unique=True)

    op.create_table(
        "exam_types",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_exam_types_name", "exam_types", ["name"], unique=True)
    op.create_index("ix_exam_types_category", "exam_types", ["category"], unique=False)

    op.create_table(
        "documents",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("patient_id", sa.String(length=36), nullable=True),
        sa.Column("file_name", sa.String(length=500), nullable=False),
        sa.Column("file_type", sa.String(length=50), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("upload_date", sa.DateTime(), nullable=False),
        sa.Column("processing_status", sa.String(length=50), nullable=False),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_documents_patient_id", "documents", ["patient_id"], unique=False)
    op.create_index("ix_documents_content_hash", "documents", ["content_hash"], unique=True)
    op.create_index("ix_documents_processing_status", "documents", ["processing_status"], unique=False)

    op.create_table(
        "exams",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("document_id", sa.String(length=36), nullable=False),
        sa.Column("exam_type_id", sa.Integer(), nullable=True),
        sa.Column("collection_date", sa.DateTime(), nullable=True),
        sa.Column("requesting_physician", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["exam_type_id"], ["exam_types.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_exams_document_id", "exams", ["document_id"], unique=False)
    op.create_index("ix_exams_exam_type_id", "exams", ["exam_type_id"], unique=False)
    op.create_index("ix_exams_collection_date", "exams", ["collection_date"], unique=False)

    op.create_table(
        "exam_results",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("exam_id", sa.String(length=36), nullable=False),
        sa.Column("parameter", sa.String(length=255), nullable=False),
        sa.Column("numeric_value", sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column("text_value", sa.Text(), nullable=True),
        sa.Column("unit", sa.String(length=50), nullable=True),
        sa.Column("reference_min", sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column("reference_max", sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=True),
        sa.Column("observations", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["exam_id"], ["exams.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_exam_results_exam_id", "exam_results", ["exam_id"], unique=False)
    op.create_index("ix_exam_results_parameter", "exam_results", ["parameter"], unique=False)
    op.create_index("ix_exam_results_status", "exam_results", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_exam_results_status", table_name="exam_results")
    op.drop_index("ix_exam_results_parameter", table_name="exam_results")
    op.drop_index("ix_exam_results_exam_id", table_name="exam_results")
    op.drop_table("exam_results")

    op.drop_index("ix_exams_collection_date", table_name="exams")
    op.drop_index("ix_exams_exam_type_id", table_name="exams")
    op.drop_index("ix_exams_document_id", table_name="exams")
    op.drop_table("exams")

    op.drop_index("ix_documents_processing_status", table_name="documents")
    op.drop_index("ix_documents_content_hash", table_name="documents")
    op.drop_index("ix_documents_patient_id", table_name="documents")
    op.drop_table("documents")

    op.drop_index("ix_exam_types_category", table_name="exam_types")
    op.drop_index("ix_exam_types_name", table_name="exam_types")
    op.drop_table("exam_types")

    op.drop_index("ix_patients_tax_id", table_name="patients")
    op.drop_index("ix_patients_name", table_name="patients")
    op.drop_table("patients")
