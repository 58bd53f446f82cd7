from __future__ import annotations
import logging
import shutil
import uuid
from dataclasses import asdict
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from dotenv import load_dotenv
from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, Header, HTTPException, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from reefstock import config
from reefstock.assemble import catalog_stats, filter_records, group_by_category
from reefstock.errors import (
    CatalogError,
    ImageError,
    InputFormatError,
    NoValidDataError,
    StorageError,
)
from reefstock.images import check_image_url, fetch_image_as_data_uri, image_search_url
from reefstock.io import check_extension, decode_upload
from reefstock.logging_config import setup_logging
from reefstock.models import CatalogRecord, CategoryGroup, PriceMarkupRule
from reefstock.pipeline import assembled_records, export_catalog, load_catalog, run_import
from reefstock.store import CatalogStore
from .db import JobStore
from .settings import SettingsFile


load_dotenv()
setup_logging()
log = logging.getLogger(__name__)

app = FastAPI(title="Reef Stock API", version="0.1.0")


# --- wiring ---

@lru_cache(maxsize=1)
def get_store() -> CatalogStore:
    return CatalogStore(config.db_path()).init()


@lru_cache(maxsize=1)
def get_job_store() -> JobStore:
    return JobStore(config.data_dir() / "jobs.sqlite3").init()


@lru_cache(maxsize=1)
def get_settings_file() -> SettingsFile:
    return SettingsFile(config.data_dir() / "settings.json").init()


def get_upload_dir() -> Path:
    p = config.data_dir() / "uploads"
    p.mkdir(parents=True, exist_ok=True)
    return p


def require_admin(
    x_admin_token: Optional[str] = Header(None),
    settings: SettingsFile = Depends(get_settings_file),
) -> None:
    token = settings.admin_token()
    if not token:
        raise HTTPException(403, "admin access is not configured")
    if x_admin_token != token:
        raise HTTPException(401, "invalid admin token")


STATUS_FOR_ERROR = [
    (NoValidDataError, 422),
    (InputFormatError, 400),
    (ImageError, 400),
    (StorageError, 503),
]


@contextmanager
def catalog_errors() -> Iterator[None]:
    try:
        yield
    except CatalogError as e:
        for kind, status in STATUS_FOR_ERROR:
            if isinstance(e, kind):
                raise HTTPException(status, str(e)) from e
        raise HTTPException(500, str(e)) from e


# --- schemas ---

class JobStatus(str):
    queued = "queued"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"


class Job(BaseModel):
    id: str
    kind: str
    status: str
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    params: Dict
    error: Optional[str] = None
    counters: Dict = {}


class FileInfo(BaseModel):
    id: str
    name: str
    path: str
    size: int
    created_at: datetime


class ImportRequest(BaseModel):
    file_id: str
    dry_run: bool = False


class ImportSummaryOut(BaseModel):
    total_rows: int
    valid_rows: int
    categories: int
    items: int
    stored: int
    repriced: int


class ItemOut(BaseModel):
    id: Optional[str]
    name: str
    raw_name: str
    size: Optional[str] = None
    gender: Optional[str] = None
    search_key: str
    category: Optional[str] = None
    quantity_on_hand: int = 0
    cost_basis: Optional[Decimal] = None
    sale_price: Optional[Decimal] = None
    sale_display: Optional[str] = None
    description: Optional[str] = None
    disabled: bool = False
    archived: bool = False
    image_reference: Optional[str] = None


class GroupOut(BaseModel):
    name: str
    category: Optional[str] = None
    items: List[ItemOut]


class CategoryStatsOut(BaseModel):
    name: str
    total: int
    active: int
    disabled: int
    status: str


class StatsOut(BaseModel):
    total_items: int
    active_items: int
    disabled_items: int
    active_categories: int
    disabled_categories: int
    categories: List[CategoryStatsOut]


class ItemPatch(BaseModel):
    disabled: Optional[bool] = None
    archived: Optional[bool] = None
    sale_price: Optional[Decimal] = Field(None, ge=0)


class BulkRequest(BaseModel):
    ids: List[str]
    disabled: bool


class MarkupIn(BaseModel):
    category: Optional[str] = None
    markup_percentage: Decimal = Field(..., ge=0)


class MarkupOut(MarkupIn):
    id: Optional[int] = None
    updated_at: Optional[datetime] = None


class ManualPriceIn(BaseModel):
    price: Decimal = Field(..., ge=0)


class ImageIn(BaseModel):
    image_reference: str


class ImageFetchIn(BaseModel):
    url: str


class SettingsIn(BaseModel):
    store_name: Optional[str] = None
    admin_token: Optional[str] = Field(None, min_length=8)
    uncategorized_label: Optional[str] = Field(None, min_length=1)


class SettingsOut(BaseModel):
    store_name: str
    uncategorized_label: str


def item_out(r: CatalogRecord, privileged: bool = False) -> ItemOut:
    parts = r.name_parts()
    return ItemOut(
        id=r.id,
        name=parts.display_name,
        raw_name=r.raw_name,
        size=parts.size,
        gender=parts.gender,
        search_key=r.search_key,
        category=r.category,
        quantity_on_hand=r.quantity_on_hand,
        cost_basis=r.cost_basis if privileged else None,
        sale_price=r.sale_price,
        sale_display=r.sale_display,
        description=r.description,
        disabled=r.disabled,
        archived=r.archived,
        image_reference=r.image_reference,
    )


def group_out(g: CategoryGroup, privileged: bool) -> GroupOut:
    return GroupOut(name=g.name, category=g.category, items=[item_out(r, privileged) for r in g.items])


# --- routes ---

@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/settings", response_model=SettingsOut, dependencies=[Depends(require_admin)])
def get_settings(settings: SettingsFile = Depends(get_settings_file)):
    return SettingsOut(**settings.get())


@app.put("/settings", response_model=SettingsOut, dependencies=[Depends(require_admin)])
def put_settings(body: SettingsIn, settings: SettingsFile = Depends(get_settings_file)):
    return SettingsOut(**settings.update(body.model_dump()))


@app.post("/files", response_model=FileInfo, dependencies=[Depends(require_admin)])
async def upload_file(
    file: UploadFile = File(...),
    jobs: JobStore = Depends(get_job_store),
    upload_dir: Path = Depends(get_upload_dir),
):
    with catalog_errors():
        check_extension(file.filename or "")
        fid = uuid.uuid4().hex
        dest = upload_dir / f"{fid}_{Path(file.filename).name}"
        with dest.open("wb") as out:
            shutil.copyfileobj(file.file, out)
        info = FileInfo(id=fid, name=file.filename, path=str(dest), size=dest.stat().st_size, created_at=datetime.now(timezone.utc))
        jobs.add_file(info.model_dump(mode="json"))
    return info


@app.get("/files", response_model=List[FileInfo], dependencies=[Depends(require_admin)])
def list_files(jobs: JobStore = Depends(get_job_store)) -> List[FileInfo]:
    with catalog_errors():
        return [FileInfo(**f) for f in jobs.list_files()]


@app.post("/jobs/import", response_model=Job, dependencies=[Depends(require_admin)])
def create_import_job(
    req: ImportRequest,
    bg: BackgroundTasks,
    store: CatalogStore = Depends(get_store),
    jobs: JobStore = Depends(get_job_store),
):
    with catalog_errors():
        f = jobs.get_file(req.file_id)
    if not f:
        raise HTTPException(404, "file_id not found")
    job = Job(
        id=uuid.uuid4().hex,
        kind="import",
        status=JobStatus.queued,
        created_at=datetime.now(timezone.utc),
        params=req.model_dump(),
    )
    with catalog_errors():
        jobs.save_job(job.model_dump(mode="json"))

    def run():
        job.status = JobStatus.running
        job.started_at = datetime.now(timezone.utc)
        try:
            src = Path(f["path"])
            text = decode_upload(src.read_bytes(), f["name"])
            summary = run_import(store, text, dry_run=req.dry_run)
            job.counters = summary.as_dict()
            job.status = JobStatus.succeeded
        except Exception as e:
            log.exception(f"Import job {job.id} failed")
            job.status = JobStatus.failed
            job.error = str(e)
        finally:
            job.finished_at = datetime.now(timezone.utc)
            jobs.save_job(job.model_dump(mode="json"))

    bg.add_task(run)
    return job


@app.get("/jobs/{job_id}", response_model=Job, dependencies=[Depends(require_admin)])
def get_job(job_id: str, jobs: JobStore = Depends(get_job_store)) -> Job:
    with catalog_errors():
        j = jobs.get_job(job_id)
    if not j:
        raise HTTPException(404, "job not found")
    return Job(**j)


@app.post("/catalog/import", response_model=ImportSummaryOut, dependencies=[Depends(require_admin)])
async def import_catalog(
    file: UploadFile = File(...),
    dry_run: bool = Form(False),
    store: CatalogStore = Depends(get_store),
):
    data = await file.read()
    with catalog_errors():
        text = decode_upload(data, file.filename or "")
        summary = run_import(store, text, dry_run=dry_run)
    return ImportSummaryOut(**summary.as_dict())


@app.get("/catalog", response_model=List[GroupOut])
def get_catalog(
    privileged: bool = False,
    include_disabled: Optional[bool] = None,
    category: Optional[str] = None,
    q: Optional[str] = None,
    x_admin_token: Optional[str] = Header(None),
    store: CatalogStore = Depends(get_store),
    settings: SettingsFile = Depends(get_settings_file),
):
    if privileged:
        require_admin(x_admin_token, settings)
    label = settings.get().get("uncategorized_label") or config.uncategorized_label()
    with catalog_errors():
        if category or q:
            records = filter_records(assembled_records(store), category=category, search_term=q, include_archived=False)
            groups = group_by_category(records, privileged=privileged, include_disabled=include_disabled, uncategorized_label=label)
        else:
            groups = load_catalog(store, privileged=privileged, include_disabled=include_disabled, uncategorized_label=label)
    return [group_out(g, privileged) for g in groups]


@app.get("/catalog/stats", response_model=StatsOut, dependencies=[Depends(require_admin)])
def get_stats(store: CatalogStore = Depends(get_store)):
    with catalog_errors():
        stats = catalog_stats(store.list_records(include_archived=False))
    return StatsOut(
        total_items=stats.total_items,
        active_items=stats.active_items,
        disabled_items=stats.disabled_items,
        active_categories=stats.active_categories,
        disabled_categories=stats.disabled_categories,
        categories=[
            CategoryStatsOut(name=c.name, total=c.total, active=c.active, disabled=c.disabled, status=c.status)
            for c in stats.categories
        ],
    )


@app.get("/catalog/export", dependencies=[Depends(require_admin)])
def download_export(store: CatalogStore = Depends(get_store)):
    out = config.data_dir() / "exports" / f"catalog_{uuid.uuid4().hex[:8]}.csv"
    with catalog_errors():
        export_catalog(store, out)
    return FileResponse(path=str(out), filename="catalog.csv", media_type="text/csv")


@app.post("/catalog/wipe", dependencies=[Depends(require_admin)])
def wipe_catalog(store: CatalogStore = Depends(get_store)) -> Dict[str, int]:
    with catalog_errors():
        return {"deleted": store.wipe_catalog()}


@app.patch("/items/{item_id}", response_model=ItemOut, dependencies=[Depends(require_admin)])
def patch_item(item_id: str, patch: ItemPatch, store: CatalogStore = Depends(get_store)):
    with catalog_errors():
        record = store.get_record(item_id)
        if record is None or record.is_category:
            raise HTTPException(404, "item not found")
        if patch.disabled is not None:
            store.set_disabled(item_id, patch.disabled)
        if patch.archived is not None:
            store.set_archived(item_id, patch.archived)
        if patch.sale_price is not None:
            store.set_manual_price(item_id, patch.sale_price)
            store.recompute_prices()
        return item_out(store.get_record(item_id), privileged=True)


@app.delete("/items/{item_id}", dependencies=[Depends(require_admin)])
def delete_item(item_id: str, store: CatalogStore = Depends(get_store)) -> Dict[str, bool]:
    with catalog_errors():
        if not store.delete_record(item_id):
            raise HTTPException(404, "item not found")
    return {"deleted": True}


@app.post("/items/bulk", dependencies=[Depends(require_admin)])
def bulk_update(req: BulkRequest, store: CatalogStore = Depends(get_store)) -> Dict[str, int]:
    with catalog_errors():
        return {"updated": store.set_disabled_many(req.ids, req.disabled)}


@app.get("/items/{item_id}/manual-price", dependencies=[Depends(require_admin)])
def get_manual_price(item_id: str, store: CatalogStore = Depends(get_store)) -> Dict:
    with catalog_errors():
        override = store.get_manual_price(item_id)
    if override is None:
        raise HTTPException(404, "no manual price for item")
    return {"id": override.item_id, "price": str(override.price), "updated_at": override.updated_at.isoformat()}


@app.put("/items/{item_id}/manual-price", dependencies=[Depends(require_admin)])
def put_manual_price(item_id: str, body: ManualPriceIn, store: CatalogStore = Depends(get_store)) -> Dict:
    with catalog_errors():
        if not store.set_manual_price(item_id, body.price):
            raise HTTPException(404, "item not found")
        store.recompute_prices()
        record = store.get_record(item_id)
    return {"id": item_id, "sale_price": str(record.sale_price), "sale_display": record.sale_display}


@app.delete("/items/{item_id}/manual-price", dependencies=[Depends(require_admin)])
def delete_manual_price(item_id: str, store: CatalogStore = Depends(get_store)) -> Dict:
    with catalog_errors():
        if not store.clear_manual_price(item_id):
            raise HTTPException(404, "no manual price for item")
        store.recompute_prices()
    return {"id": item_id, "cleared": True}


@app.get("/markups", response_model=List[MarkupOut], dependencies=[Depends(require_admin)])
def get_markups(store: CatalogStore = Depends(get_store)):
    with catalog_errors():
        return [MarkupOut(**asdict(r)) for r in store.list_markup_rules()]


@app.put("/markups", response_model=List[MarkupOut], dependencies=[Depends(require_admin)])
def put_markups(rules: List[MarkupIn], store: CatalogStore = Depends(get_store)):
    with catalog_errors():
        saved = store.save_markup_rules(
            [PriceMarkupRule(category=r.category or None, markup_percentage=r.markup_percentage) for r in rules]
        )
        store.recompute_prices()
    return [MarkupOut(**asdict(r)) for r in saved]


@app.post("/pricing/recompute", dependencies=[Depends(require_admin)])
def recompute(store: CatalogStore = Depends(get_store)) -> Dict[str, int]:
    with catalog_errors():
        return {"changed": store.recompute_prices()}


@app.get("/images/{key}")
def get_image(key: str, store: CatalogStore = Depends(get_store)) -> Dict[str, str]:
    with catalog_errors():
        ref = store.get_image(key)
    if ref is None:
        raise HTTPException(404, "image not found")
    return {"search_key": key.strip().upper(), "image_reference": ref}


@app.put("/images/{key}", dependencies=[Depends(require_admin)])
def put_image(key: str, body: ImageIn, store: CatalogStore = Depends(get_store)) -> Dict[str, str]:
    ref = body.image_reference.strip()
    if ref.lower().startswith(("http://", "https://")) and not check_image_url(ref):
        raise HTTPException(400, "image URL is not reachable or not an image")
    with catalog_errors():
        norm = store.save_image(key, ref)
    return {"search_key": norm}


@app.post("/images/{key}/fetch", dependencies=[Depends(require_admin)])
def fetch_image(key: str, body: ImageFetchIn, store: CatalogStore = Depends(get_store)) -> Dict[str, str]:
    with catalog_errors():
        data_uri = fetch_image_as_data_uri(body.url, timeout=config.image_fetch_timeout())
        norm = store.save_image(key, data_uri)
    return {"search_key": norm}


@app.get("/images/{key}/search-url")
def get_image_search_url(key: str) -> Dict[str, str]:
    return {"url": image_search_url(key.strip().upper())}
