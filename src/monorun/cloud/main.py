from __future__ import annotations

import re

import sqlalchemy as sa
from fastapi import FastAPI, HTTPException, Request, Response
from pydantic import BaseModel

from .db import SessionLocal, engine
from .models import Artifact, Base
from .settings import MAX_ARTIFACT_BYTES

app = FastAPI(title="monorun Remote Cache")

FINGERPRINT_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")

# -------------------- Schemas --------------------

class StoredResponse(BaseModel):
    hash: str
    size: int
    replaced: bool

class StatsResponse(BaseModel):
    entries: int
    bytes: int

# -------------------- Startup --------------------

@app.on_event("startup")
async def startup() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

def _check(fingerprint: str) -> None:
    if not FINGERPRINT_RE.match(fingerprint):
        raise HTTPException(status_code=400, detail="Invalid fingerprint")

# -------------------- Endpoints --------------------

@app.head("/v1/cache/{fingerprint}")
async def artifact_exists(fingerprint: str):
    _check(fingerprint)
    async with SessionLocal() as s:
        size = (await s.execute(sa.select(Artifact.size).where(Artifact.hash == fingerprint))).scalar_one_or_none()
    if size is None:
        raise HTTPException(status_code=404, detail="Artifact not found")
    return Response(status_code=200, headers={"X-Artifact-Size": str(size)})

@app.get("/v1/cache/{fingerprint}")
async def download_artifact(fingerprint: str):
    _check(fingerprint)
    async with SessionLocal() as s:
        artifact = await s.get(Artifact, fingerprint)
        if not artifact:
            raise HTTPException(status_code=404, detail="Artifact not found")
        return Response(content=artifact.data, media_type="application/octet-stream")

@app.put("/v1/cache/{fingerprint}", response_model=StoredResponse)
async def upload_artifact(fingerprint: str, request: Request):
    _check(fingerprint)
    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="Empty artifact")
    if len(data) > MAX_ARTIFACT_BYTES:
        raise HTTPException(status_code=413, detail="Artifact too large")

    async with SessionLocal() as s:
        async with s.begin():
            artifact = await s.get(Artifact, fingerprint)
            replaced = artifact is not None
            if artifact:
                artifact.data = data
                artifact.size = len(data)
            else:
                s.add(Artifact(hash=fingerprint, size=len(data), data=data))

    return StoredResponse(hash=fingerprint, size=len(data), replaced=replaced)

@app.get("/v1/cache", response_model=StatsResponse)
async def cache_stats():
    async with SessionLocal() as s:
        q = sa.select(sa.func.count(), sa.func.coalesce(sa.func.sum(Artifact.size), 0)).select_from(Artifact)
        entries, total = (await s.execute(q)).one()
    return StatsResponse(entries=entries, bytes=total)
