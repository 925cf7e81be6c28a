from fastapi import APIRouter, Depends, HTTPException

from storefront.api.deps import get_runner, http_error, require_admin
from storefront.services.exceptions import LifecycleException
from storefront.services.sweep_runner import SWEEP_KINDS, SweepRunner

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/sweeps", summary="List sweep kinds")
def list_sweeps():
    return {"kinds": list(SWEEP_KINDS)}


@router.post("/sweeps/{kind}", summary="Run one sweep now")
def run_sweep(kind: str, runner: SweepRunner = Depends(get_runner)):
    if kind not in SWEEP_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown sweep kind: {kind}")
    try:
        report = runner.run_exclusive(kind)
    except LifecycleException as e:
        raise http_error(e)
    if report is None:
        raise HTTPException(status_code=409, detail="Sweep already running")
    return {"kind": kind, "report": report}
