"""
Storage handlers for backup archives.

Supports:
- S3Storage: S3-compatible object storage, one folder (key prefix) per day
- LocalStorage: flat directory holding the most recent local copies
"""

import os
import shutil
import logging
from pathlib import Path
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

import boto3
from botocore.exceptions import ClientError, BotoCoreError


logger = logging.getLogger(__name__)

MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100MB
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB
DELETE_BATCH_SIZE = 1000  # S3 DeleteObjects limit


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


def _client_error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


class S3Storage:
    """
    Handler for backup folders in an S3-compatible bucket.

    Key layout: {prefix}{folder}/{filename}
    """

    def __init__(
        self,
        bucket_name: str,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        region: str = 'us-east-1',
        endpoint_url: Optional[str] = None,
        prefix: str = ''
    ):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: Bucket holding the backup folders
            access_key: Access key ID (None to use the boto3 credential chain)
            secret_key: Secret access key
            region: Bucket region (default: us-east-1)
            endpoint_url: Custom endpoint for non-AWS providers (MinIO, Wasabi, ...)
            prefix: Optional key prefix all folders live under
        """
        if not bucket_name:
            raise StorageError("S3 bucket name is not configured")

        self.bucket_name = bucket_name
        self.region = region
        self.prefix = prefix.strip('/') + '/' if prefix.strip('/') else ''

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

    def folder_key(self, folder: str, filename: str = '') -> str:
        return f"{self.prefix}{folder.strip('/')}/{filename}"

    def upload(self, local_path: str, folder: str) -> str:
        """
        Upload an archive into a backup folder.

        Args:
            local_path: Path to local archive file
            folder: Daily folder name

        Returns:
            Key of the uploaded object

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        key = self.folder_key(folder, os.path.basename(local_path))

        try:
            if os.path.getsize(local_path) > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, key)
            else:
                with open(local_path, 'rb') as f:
                    self.s3_client.put_object(Bucket=self.bucket_name, Key=key, Body=f)
            return key

        except ClientError as e:
            raise StorageError(f"S3 upload failed ({_client_error_code(e)}): {e}")
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"S3 upload failed: {e}")

    def _multipart_upload(self, local_path: str, key: str):
        """Upload a large file in chunks, aborting the upload on any error."""
        upload_id = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=key
        )['UploadId']

        parts = []
        try:
            with open(local_path, 'rb') as f:
                for part_number, chunk in enumerate(iter(lambda: f.read(MULTIPART_CHUNK_SIZE), b''), start=1):
                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=chunk
                    )
                    parts.append({'PartNumber': part_number, 'ETag': response['ETag']})

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )
        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload for {key}: {abort_error}")
            raise

    def object_exists(self, key: str) -> bool:
        """
        Check whether an object exists.

        Raises:
            StorageError: On errors other than "not found"
        """
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            if _client_error_code(e) in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise StorageError(f"S3 head failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 head failed: {e}")

    def get_object_size(self, key: str) -> int:
        """Size of an object in bytes."""
        try:
            return self.s3_client.head_object(Bucket=self.bucket_name, Key=key)['ContentLength']
        except ClientError as e:
            raise StorageError(f"S3 head failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 head failed: {e}")

    def list_folders(self) -> List[str]:
        """
        List top-level backup folder names (without prefix or trailing slash).

        Raises:
            StorageError: If listing fails
        """
        try:
            folders = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self.prefix, Delimiter='/'):
                for common_prefix in page.get('CommonPrefixes', []):
                    name = common_prefix['Prefix'][len(self.prefix):].rstrip('/')
                    if name:
                        folders.append(name)

            return folders

        except ClientError as e:
            raise StorageError(f"S3 list failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 folders: {e}")

    def list_objects(self, prefix: str = '') -> List[Dict[str, Any]]:
        """
        List objects under ``prefix`` (relative to the storage prefix).

        Returns:
            List of dicts with 'Key', 'LastModified', and 'Size' keys

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self.prefix + prefix):
                for obj in page.get('Contents', []):
                    objects.append({
                        'Key': obj['Key'],
                        'LastModified': obj['LastModified'],
                        'Size': obj['Size']
                    })

            return objects

        except ClientError as e:
            raise StorageError(f"S3 list failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

    def list_folder_files(self, folder: str) -> List[str]:
        """File names directly inside a backup folder."""
        folder_prefix = self.folder_key(folder)
        names = [obj['Key'][len(folder_prefix):] for obj in self.list_objects(f"{folder.strip('/')}/")]
        return [name for name in names if name and '/' not in name]

    def delete_folder(self, folder: str) -> int:
        """
        Delete every object in a backup folder.

        Args:
            folder: Folder name

        Returns:
            Number of objects deleted

        Raises:
            StorageError: If listing or any deletion fails
        """
        keys = [obj['Key'] for obj in self.list_objects(f"{folder.strip('/')}/")]

        try:
            for start in range(0, len(keys), DELETE_BATCH_SIZE):
                batch = keys[start:start + DELETE_BATCH_SIZE]
                response = self.s3_client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={'Objects': [{'Key': key} for key in batch], 'Quiet': True}
                )
                errors = response.get('Errors', [])
                if errors:
                    first = errors[0]
                    raise StorageError(
                        f"S3 delete failed for {len(errors)} object(s) in {folder}: "
                        f"{first.get('Key')} ({first.get('Code')})"
                    )
        except ClientError as e:
            raise StorageError(f"S3 delete failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete S3 folder {folder}: {e}")

        return len(keys)

    def download(self, key: str, local_path: str) -> str:
        """
        Download an object to a local path.

        Raises:
            StorageError: If download fails
        """
        try:
            self.s3_client.download_file(self.bucket_name, key, local_path)
            return local_path
        except ClientError as e:
            raise StorageError(f"S3 download failed ({_client_error_code(e)}): {e}")
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"Failed to download {key}: {e}")

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Raises:
            StorageError: If connection test fails
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = _client_error_code(e)
            if error_code == '404':
                raise StorageError(f"Bucket does not exist: {self.bucket_name}")
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}")
            else:
                raise StorageError(f"S3 connection test failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to connect to S3: {e}")


def create_s3_storage(config) -> S3Storage:
    """Build an S3Storage from a configuration class."""
    return S3Storage(
        bucket_name=config.S3_BUCKET,
        access_key=config.AWS_ACCESS_KEY_ID,
        secret_key=config.AWS_SECRET_ACCESS_KEY,
        region=config.S3_REGION,
        endpoint_url=config.S3_ENDPOINT_URL,
        prefix=config.S3_PREFIX
    )


class LocalStorage:
    """
    Handler for local copies of recent archives.

    Archives are kept flat in ``base_path`` and pruned by age.
    """

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create local storage directory: {e}")

    def store(self, source_path: str) -> str:
        """
        Copy archive to local storage.

        Returns:
            Full path of the stored copy

        Raises:
            StorageError: If storage fails
        """
        if not os.path.exists(source_path):
            raise StorageError(f"Source file not found: {source_path}")

        dest_path = self.base_path / os.path.basename(source_path)

        try:
            shutil.copy2(source_path, dest_path)
            return str(dest_path)
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to store locally: {e}")

    def list_files(self, domain: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        List local archives, optionally only those of one domain.

        Returns:
            List of dicts with 'path', 'modified', and 'size' keys
        """
        pattern = f"{domain}*.tar.gz" if domain else '*.tar.gz'

        try:
            files = []
            for file_path in sorted(self.base_path.glob(pattern)):
                if file_path.is_file():
                    stat = file_path.stat()
                    files.append({
                        'path': str(file_path),
                        'modified': datetime.fromtimestamp(stat.st_mtime),
                        'size': stat.st_size
                    })
            return files
        except OSError as e:
            raise StorageError(f"Failed to list local files: {e}")

    def delete(self, path: str):
        """
        Delete a local archive.

        Raises:
            StorageError: If deletion fails
        """
        full_path = self.base_path / path

        try:
            if full_path.exists():
                full_path.unlink()
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete local file: {e}")

    def prune(self, max_age_days: int, now: Optional[datetime] = None) -> List[str]:
        """
        Delete archives last modified more than ``max_age_days`` ago.

        Returns:
            Paths of deleted archives
        """
        cutoff = (now or datetime.now()) - timedelta(days=max_age_days)
        deleted = []

        for file_info in self.list_files():
            if file_info['modified'] < cutoff:
                self.delete(file_info['path'])
                deleted.append(file_info['path'])
                logger.info(f"Removed old local backup: {file_info['path']}")

        return deleted
