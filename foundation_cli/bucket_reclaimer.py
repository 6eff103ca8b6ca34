# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Bucket Reclaimer Module

Empties and deletes versioned S3 buckets. Object versions and delete markers
are deleted in batches submitted to a fixed worker pool; individual failures
are collected and never abort the remaining batches.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterator, List, Sequence, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from .aws import CLIENT_CONFIG, is_not_found
from .exceptions import PartialFailureError
from .models import ReclaimResult, ResourceFailure

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 1000
MAX_PASSES = 3

VERSION = "version"
MARKER = "marker"

# (kind, {"Key": ..., "VersionId": ...})
BatchEntry = Tuple[str, Dict[str, str]]


def probe_bucket(s3, bucket: str) -> bool:
    """head_bucket probe; any error is reported as absent"""
    try:
        s3.head_bucket(Bucket=bucket)
        return True
    except (ClientError, BotoCoreError) as e:
        if not isinstance(e, ClientError) or not is_not_found(e):
            logger.warning(f"Could not probe bucket {bucket}, assuming absent: {e}")
        return False


class BucketReclaimer:
    """Empties (all versions and delete markers) and deletes S3 buckets"""

    def __init__(self, session, region: str, max_workers: int = 8):
        """
        Initialize bucket reclaimer

        Args:
            session: boto3 session used to build the S3 client
            region: AWS region
            max_workers: Size of the delete worker pool
        """
        self.region = region
        self.max_workers = max_workers
        self.s3 = session.client("s3", region_name=region, config=CLIENT_CONFIG)

    def bucket_exists(self, bucket: str) -> bool:
        """
        Probe a bucket with head_bucket.

        Errors other than a definitive not-found are logged and treated as
        not found, so a probe never fails the run.
        """
        return probe_bucket(self.s3, bucket)

    def reclaim(self, bucket: str, delete_bucket: bool = True) -> ReclaimResult:
        """
        Empty a bucket and optionally delete it

        Args:
            bucket: Bucket name
            delete_bucket: Delete the bucket once it is empty

        Returns:
            ReclaimResult with counts and collected errors. A bucket that does
            not exist is a success with zero objects processed.
        """
        if not self.bucket_exists(bucket):
            logger.info(f"Bucket {bucket} does not exist, nothing to reclaim")
            return ReclaimResult(bucket=bucket, existed=False)

        versions = 0
        markers = 0
        errors: List[str] = []
        empty = False

        for attempt in range(1, MAX_PASSES + 1):
            logger.info(f"Emptying bucket {bucket} (pass {attempt}/{MAX_PASSES})")
            pass_versions, pass_markers, pass_errors = self._empty_pass(bucket)
            versions += pass_versions
            markers += pass_markers
            errors.extend(pass_errors)
            empty = self._is_empty(bucket, errors)
            if empty:
                break

        if not empty:
            errors.append(f"{bucket}: objects remain after {MAX_PASSES} passes")

        deleted = False
        if delete_bucket and empty:
            deleted = self._delete_bucket(bucket, errors)

        logger.info(
            f"Reclaimed {bucket}: {versions} versions, {markers} delete markers, "
            f"{len(errors)} errors, bucket deleted={deleted}"
        )
        return ReclaimResult(
            bucket=bucket,
            existed=True,
            versions_deleted=versions,
            markers_deleted=markers,
            bucket_deleted=deleted,
            errors=tuple(errors),
        )

    def _empty_pass(self, bucket: str) -> Tuple[int, int, List[str]]:
        versions = 0
        markers = 0
        errors: List[str] = []

        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        futures = {}
        try:
            try:
                for batch in self._batches(bucket):
                    futures[executor.submit(self._delete_batch, bucket, batch)] = batch
            except (ClientError, BotoCoreError) as e:
                errors.append(f"{bucket}: listing failed: {e}")

            for future in as_completed(futures):
                batch = futures[future]
                try:
                    failed, batch_errors = future.result()
                except (ClientError, BotoCoreError) as e:
                    errors.append(f"{bucket}: batch of {len(batch)} failed: {e}")
                    continue
                errors.extend(batch_errors)
                for kind, entry in batch:
                    if (entry["Key"], entry["VersionId"]) in failed:
                        continue
                    if kind == MARKER:
                        markers += 1
                    else:
                        versions += 1
        except KeyboardInterrupt:
            # Queued batches must not run after an interrupt; in-flight calls finish
            logger.warning(f"Interrupted while emptying {bucket}, cancelling queued batches")
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)

        return versions, markers, errors

    def _batches(self, bucket: str) -> Iterator[List[BatchEntry]]:
        """Yield delete batches of at most MAX_BATCH_SIZE entries, page by page"""
        paginator = self.s3.get_paginator("list_object_versions")
        batch: List[BatchEntry] = []
        for page in paginator.paginate(Bucket=bucket):
            entries = [(VERSION, v) for v in page.get("Versions", [])] + [
                (MARKER, m) for m in page.get("DeleteMarkers", [])
            ]
            for kind, item in entries:
                batch.append((kind, {"Key": item["Key"], "VersionId": item["VersionId"]}))
                if len(batch) == MAX_BATCH_SIZE:
                    yield batch
                    batch = []
        if batch:
            yield batch

    def _delete_batch(self, bucket: str, batch: List[BatchEntry]):
        response = self.s3.delete_objects(
            Bucket=bucket,
            Delete={"Objects": [entry for _, entry in batch], "Quiet": True},
        )
        failed = set()
        errors = []
        for error in response.get("Errors", []):
            failed.add((error.get("Key"), error.get("VersionId")))
            errors.append(
                f"{bucket}/{error.get('Key')} ({error.get('VersionId')}): "
                f"{error.get('Code')} {error.get('Message', '')}".rstrip()
            )
        return failed, errors

    def _is_empty(self, bucket: str, errors: List[str]) -> bool:
        try:
            response = self.s3.list_object_versions(Bucket=bucket, MaxKeys=1)
        except (ClientError, BotoCoreError) as e:
            errors.append(f"{bucket}: could not verify bucket is empty: {e}")
            return False
        return not response.get("Versions") and not response.get("DeleteMarkers")

    def _delete_bucket(self, bucket: str, errors: List[str]) -> bool:
        try:
            self.s3.delete_bucket(Bucket=bucket)
            logger.info(f"Deleted S3 bucket: {bucket}")
            return True
        except (ClientError, BotoCoreError) as e:
            if isinstance(e, ClientError) and is_not_found(e):
                return True
            logger.error(f"Error deleting bucket {bucket}: {e}")
            errors.append(f"{bucket}: delete_bucket failed: {e}")
            return False


def ensure_reclaimed(results: Sequence[ReclaimResult]) -> None:
    """Raise PartialFailureError if any existing bucket survived reclamation"""
    failures = [
        ResourceFailure(
            logical_id=r.bucket,
            resource_type="AWS::S3::Bucket",
            status="DELETE_FAILED",
            reason="; ".join(r.errors) or "bucket still exists",
        )
        for r in results
        if r.existed and not r.bucket_deleted
    ]
    if failures:
        raise PartialFailureError(
            f"{len(failures)} bucket(s) could not be reclaimed", failures=failures
        )
