
# drops/routers.py
from fastapi import APIRouter
from utils.response_wrapper import response_wrapper
from .views import create_drop, retrieve_blob, health

router = APIRouter()

router.post("/api/drop", status_code=201)(response_wrapper(create_drop))
router.get("/api/blob/{blob_id}")(response_wrapper(retrieve_blob))
router.get("/health")(health)
