# services/datasets.py — Read, download and delete worker-produced datasets
import os
import logging
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFoundError
from models import Dataset, OutputFormat, utcnow
from services.scoping import get_scoped_child, ordered, paginate, scoped_children

logger = logging.getLogger("foundry.datasets")

MIME_TYPES = {
    OutputFormat.CONVERSATIONAL_JSONL: "application/x-jsonlines",
}
DEFAULT_MIME_TYPE = "application/json"


async def list_datasets(
    db: AsyncSession,
    organisation_id: str,
    project_id: Optional[str] = None,
    output_format: Optional[OutputFormat] = None,
    page: int = 1,
    limit: int = 50,
) -> List[Dataset]:
    stmt = scoped_children(Dataset, organisation_id)
    if project_id:
        stmt = stmt.where(Dataset.project_id == project_id)
    if output_format:
        stmt = stmt.where(Dataset.output_format == output_format)
    result = await db.execute(paginate(ordered(stmt, Dataset), page, limit))
    return list(result.scalars().all())


async def get_dataset(db: AsyncSession, organisation_id: str, dataset_id: str) -> Dataset:
    return await get_scoped_child(db, Dataset, organisation_id, dataset_id)


async def download_info(db: AsyncSession, organisation_id: str, dataset_id: str) -> Tuple[str, str, str]:
    """Returns (path, filename, mime type) for a dataset whose file is present."""
    dataset = await get_dataset(db, organisation_id, dataset_id)
    if not os.path.isfile(dataset.output_storage_path):
        raise NotFoundError("dataset file")
    mime_type = MIME_TYPES.get(OutputFormat(dataset.output_format), DEFAULT_MIME_TYPE)
    return dataset.output_storage_path, dataset.name, mime_type


async def delete_dataset(db: AsyncSession, organisation_id: str, dataset_id: str) -> None:
    dataset = await get_dataset(db, organisation_id, dataset_id)
    now = utcnow()
    dataset.deleted_at = now
    dataset.updated_at = now
    await db.commit()
    logger.info(f"Dataset deleted dataset_id={dataset.id}")
