"""
Storage handlers for backup archives.

Supports:
- LocalStorage: The local artifact directory
- S3Storage: An S3-compatible bucket (Backblaze B2 by default), mirrored
  from the local directory
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from backup_agent.errors import CleanupError, StorageError
from .compression import PARTIAL_SUFFIX


logger = logging.getLogger(__name__)

MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100MB
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB


class LocalStorage:
    """
    Handler for the local artifact directory.

    Archives live directly in base_path; nothing else in the agent writes
    there, but foreign files are tolerated.
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Directory holding backup archives
        """
        self.base_path = Path(base_path)

        # Create base directory if it doesn't exist
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create local storage directory: {e}")

    def list_files(self) -> List[Path]:
        """
        List regular files directly inside the artifact directory.

        Raises:
            StorageError: If the directory cannot be read
        """
        try:
            return sorted(p for p in self.base_path.iterdir() if p.is_file())
        except OSError as e:
            raise StorageError(f"Failed to list local files: {e}")

    def delete(self, path: str):
        """
        Delete an archive from local storage.

        Raises:
            CleanupError: If deletion fails
        """
        full_path = self.base_path / Path(path).name

        try:
            if full_path.exists():
                full_path.unlink()
        except PermissionError as e:
            raise CleanupError(f"Permission denied deleting {full_path}: {e}")
        except OSError as e:
            raise CleanupError(f"Failed to delete {full_path}: {e}")


@dataclass
class SyncResult:
    """Summary of one mirror operation"""
    uploaded: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)


class S3Storage:
    """
    Handler for an S3-compatible bucket.

    Objects are keyed by their path relative to the mirrored directory.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        bucket_name: str,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize S3 storage handler.

        Args:
            access_key: Access key ID (B2 application key ID)
            secret_key: Secret access key (B2 application key)
            bucket_name: Bucket name
            region: Region name
            endpoint_url: S3 API endpoint; None uses AWS
        """
        self.bucket_name = bucket_name
        self.region = region

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def sync_directory(self, local_dir: str) -> SyncResult:
        """
        Mirror a local directory into the bucket.

        Uploads files missing remotely or differing in size, then deletes
        remote objects with no local counterpart. Unfinished archives
        (PARTIAL_SUFFIX) are never uploaded.

        Raises:
            StorageError: If any S3 operation fails
        """
        base = Path(local_dir)
        local_files = {}
        for path in sorted(base.rglob('*')):
            if path.is_file() and not path.name.endswith(PARTIAL_SUFFIX):
                local_files[path.relative_to(base).as_posix()] = path

        remote_objects = {obj['Key']: obj for obj in self.list_objects()}
        result = SyncResult()

        for key, path in local_files.items():
            remote = remote_objects.get(key)
            if remote is not None and remote['Size'] == path.stat().st_size:
                result.unchanged.append(key)
                continue
            self.upload(str(path), key)
            result.uploaded.append(key)
            logger.debug(f"Uploaded {key}")

        for key in sorted(set(remote_objects) - set(local_files)):
            self.delete(key)
            result.deleted.append(key)
            logger.debug(f"Deleted remote object {key}")

        return result

    def upload(self, local_path: str, s3_key: str) -> str:
        """
        Upload a file to the bucket.

        Returns:
            S3 key of uploaded file

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        try:
            file_size = os.path.getsize(local_path)

            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, s3_key)
            else:
                self._simple_upload(local_path, s3_key)

            return s3_key

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}")
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"S3 upload failed: {e}")

    def _simple_upload(self, local_path: str, s3_key: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=s3_key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, s3_key: str):
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=s3_key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1
                while True:
                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=s3_key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except (ClientError, BotoCoreError, OSError):
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload for {s3_key}: {abort_error}")
            raise

    def delete(self, s3_key: str):
        """
        Delete an object from the bucket.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=s3_key
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 delete failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete from S3: {e}")

    def list_objects(self, prefix: str = '') -> List[Dict]:
        """
        List objects in the bucket with given prefix.

        Returns:
            List of dicts with 'Key', 'LastModified', and 'Size' keys

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    objects.append({
                        'Key': obj['Key'],
                        'LastModified': obj['LastModified'],
                        'Size': obj['Size']
                    })

            return objects

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

