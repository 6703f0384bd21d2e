"""
Ad submission pipeline.

Order of work for one submission:
1. validate the image, then the form fields (nothing persisted on failure)
2. store the image through the asset store
3. count the phone's existing ads and insert the new ad, under a
   per-phone lock so the count and the insert cannot interleave with
   another submission for the same phone in this process

An image stored in step 2 is orphaned when step 3 rejects the ad.
"""

import logging
from typing import Any, Mapping, Optional

import pydantic
from sqlalchemy.orm import Session

from adboard.assets import AssetStore, ImageUpload, validate_image
from adboard.errors import QuotaExceededError, ValidationError
from adboard.schemas import AdSubmission, Confirmation
from adboard.storage import count_ads_by_phone, create_ad
from adboard.utils import StripedLock

logger = logging.getLogger(__name__)


def parse_submission(
    form: Mapping[str, Any],
    reject_unknown_categories: bool = True,
    phone_region: Optional[str] = None,
) -> AdSubmission:
    """
    Validate raw form fields into an AdSubmission.

    Raises:
        ValidationError: listing every invalid field.
    """
    data = {key: value for key, value in form.items() if value is not None}
    try:
        return AdSubmission.model_validate(
            data,
            context={
                "reject_unknown_categories": reject_unknown_categories,
                "phone_region": phone_region,
            },
        )
    except pydantic.ValidationError as e:
        problems = []
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"]) or "form"
            message = error["msg"]
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
            problems.append(f"{field}: {message}")
        logger.info(f"Submission rejected: {problems}")
        raise ValidationError("; ".join(problems)) from e


class SubmissionPipeline:
    """Validates, stores and persists one ad per call to `submit`."""

    def __init__(
        self,
        db: Session,
        asset_store: AssetStore,
        phone_locks: StripedLock,
        max_ads_per_phone: int = 2,
        max_image_bytes: int = 2 * 1024 * 1024,
        reject_unknown_categories: bool = True,
        phone_region: Optional[str] = None,
    ):
        self.db = db
        self.asset_store = asset_store
        self.phone_locks = phone_locks
        self.max_ads_per_phone = max_ads_per_phone
        self.max_image_bytes = max_image_bytes
        self.reject_unknown_categories = reject_unknown_categories
        self.phone_region = phone_region

    def submit(self, form: Mapping[str, Any], upload: Optional[ImageUpload] = None) -> Confirmation:
        """
        Submit one ad.

        Raises:
            UploadError: the image has the wrong type or is too large
            ValidationError: a form field is missing or malformed
            QuotaExceededError: the phone already has max_ads_per_phone ads
            StorageError: the asset store or the repository failed
        """
        if upload is not None:
            validate_image(upload, self.max_image_bytes)
        submission = parse_submission(form, self.reject_unknown_categories, self.phone_region)

        image_url = ""
        if upload is not None:
            image_url = self.asset_store.save(upload)

        with self.phone_locks.for_key(submission.phone):
            count = count_ads_by_phone(self.db, submission.phone)
            if count >= self.max_ads_per_phone:
                if image_url:
                    logger.warning(f"Quota reached for {submission.phone}; orphaned image {image_url}")
                else:
                    logger.info(f"Quota reached for {submission.phone} ({count} ads)")
                raise QuotaExceededError(self.max_ads_per_phone)

            ad = create_ad(
                self.db,
                phone=submission.phone,
                city=submission.city,
                address=submission.address,
                category=submission.group,
                image_url=image_url,
            )

        return Confirmation(
            id=ad.id,
            phone=ad.phone,
            category=ad.category,
            image_url=ad.image_url,
            created_at=ad.created_at,
        )
