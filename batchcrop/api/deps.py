from typing import Dict

from batchcrop.config import PipelineConfig
from batchcrop.schemas.batch import BatchProgressRecord
from batchcrop.services.archive import ArchiveBuilder
from batchcrop.services.crop_service import CropService
from batchcrop.services.item_processor import ItemProcessor
from batchcrop.services.session import BatchSession
from batchcrop.services.storage import LocalObjectStore, ObjectStore
from batchcrop.services.transform_client import RemoteTransform
from batchcrop.services.transform_service import ReferenceTransformService
from batchcrop.services.webhook import WebhookService

# 全域服務實例
pipeline_config = PipelineConfig()
object_store = LocalObjectStore()
session = BatchSession()
webhook_service = WebhookService()
remote_transform = RemoteTransform(pipeline_config.transform_endpoint)
item_processor = ItemProcessor(object_store, remote_transform, pipeline_config)
crop_service = CropService(object_store, pipeline_config)
archive_builder = ArchiveBuilder(store=object_store, config=pipeline_config)
reference_transform = ReferenceTransformService(object_store, pipeline_config)

# 批次進度追蹤（內存存儲）
batch_progress: Dict[str, BatchProgressRecord] = {}


def get_config() -> PipelineConfig:
    return pipeline_config

def get_store() -> ObjectStore:
    return object_store

def get_session() -> BatchSession:
    return session

def get_item_processor() -> ItemProcessor:
    return item_processor

def get_webhook_service() -> WebhookService:
    return webhook_service

def get_crop_service() -> CropService:
    return crop_service

def get_archive_builder() -> ArchiveBuilder:
    return archive_builder

def get_reference_transform() -> ReferenceTransformService:
    return reference_transform

def get_batch_progress() -> Dict[str, BatchProgressRecord]:
    return batch_progress


async def close_clients():
    """關閉所有 HTTP 客戶端"""
    await remote_transform.close()
    await archive_builder.close()
    await webhook_service.close()
