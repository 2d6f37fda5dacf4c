"""
Profile blobs
Open string-keyed identity profiles kept as JSON in the content store
"""

import asyncio
import json
from typing import Any, Dict, Optional
import structlog

from ..config import CustodyConfig, get_custody_config
from ..constants import ProfileDefaults
from ..exceptions import StoreUnavailableError, StoreWriteFailedError, ValidationError
from ..store.adapter import ContentStore
from ..utils.validators import validate_content_hash

logger = structlog.get_logger(__name__)


class ProfileService:
    """Stores profiles as blobs; the returned content hash is the profile_ref"""

    def __init__(self, store: ContentStore, config: Optional[CustodyConfig] = None):
        self.store = store
        self.config = config or get_custody_config()

    async def save_profile(self, fields: Dict[str, Any]) -> str:
        if not isinstance(fields, dict) or not all(isinstance(k, str) for k in fields):
            raise ValidationError("profile must be a string-keyed mapping", field="profile")

        data = json.dumps(fields, sort_keys=True).encode(ProfileDefaults.ENCODING)
        try:
            profile_ref = await asyncio.wait_for(self.store.put(data), self.config.store_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise StoreWriteFailedError(reason="timeout") from exc

        logger.debug("Profile stored", profile_ref=profile_ref, fields=sorted(fields))
        return profile_ref

    async def load_profile(self, profile_ref: str) -> Dict[str, Any]:
        """Parse a profile blob; non-JSON content is returned under rawData"""
        profile_ref = validate_content_hash(profile_ref, field_name="profile_ref")
        try:
            data = await asyncio.wait_for(self.store.get(profile_ref), self.config.store_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError("get", reason="timeout") from exc

        text = data.decode(ProfileDefaults.ENCODING, errors="replace")
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            logger.debug("Profile blob is not JSON", profile_ref=profile_ref)
            return {ProfileDefaults.RAW_DATA_KEY: text}

        if not isinstance(parsed, dict):
            return {ProfileDefaults.RAW_DATA_KEY: parsed}
        return parsed
