"""
Storage handlers for backup artifacts.

Supports:
- S3Storage: AWS S3 and S3-compatible services (Backblaze B2)
- LocalStorage: A directory on the local filesystem

Both expose the same surface: upload, download, delete, list_files,
file_exists and file_size. Paths are remote keys relative to the bucket or
base directory, always with forward slashes.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from xbackup.errors import StorageError

logger = logging.getLogger(__name__)

MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100MB
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB

B2_DEFAULT_REGION = 'us-west-002'


def remote_key(remote_path: str, filename: str) -> str:
    """Join a remote directory prefix and a filename into a key."""
    prefix = (remote_path or '').strip('/')
    return f"{prefix}/{filename}" if prefix else filename


def _client_error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', 'Unknown')


class S3Storage:
    """
    Handler for backups in an S3 bucket.

    Objects are stored under the exact key passed to upload(); the caller
    decides the layout.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        bucket_name: str,
        region: str = 'us-east-1',
        endpoint: Optional[str] = None,
        log: Optional[logging.Logger] = None
    ):
        """
        Initialize S3 storage handler.

        Args:
            access_key: Access key ID
            secret_key: Secret access key
            bucket_name: Bucket name
            region: Region (default: us-east-1)
            endpoint: Custom endpoint URL for S3-compatible services
            log: Logger to use instead of the module logger
        """
        self.bucket_name = bucket_name
        self.region = region
        self.endpoint = endpoint
        self.log = log or logger

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint or None
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def __repr__(self):
        return f"S3Storage(bucket={self.bucket_name!r}, region={self.region!r})"

    def upload(self, local_path: str, remote_name: str) -> str:
        """
        Upload a file and verify the stored size.

        Args:
            local_path: Path to local file
            remote_name: Object key

        Returns:
            Object key of uploaded file

        Raises:
            StorageError: If upload fails or the remote size differs
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        try:
            file_size = os.path.getsize(local_path)

            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, remote_name)
            else:
                self._simple_upload(local_path, remote_name)

        except ClientError as e:
            raise StorageError(f"S3 upload failed ({_client_error_code(e)}): {e}")
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"S3 upload failed: {e}")

        remote_size = self.file_size(remote_name)
        if remote_size != file_size:
            raise StorageError(
                f"Upload size mismatch for {remote_name}: local={file_size}, remote={remote_size}"
            )

        return remote_name

    def _simple_upload(self, local_path: str, key: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, key: str):
        """
        Upload large file using multipart upload.

        The upload is aborted if any part fails.
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=key
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
                        Key=key,
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
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except (ClientError, BotoCoreError, OSError):
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                self.log.warning(f"Failed to abort multipart upload of {key}: {abort_error}")
            raise

    def download(self, remote_name: str, local_path: str) -> str:
        """
        Download an object to a local file.

        Raises:
            StorageError: If download fails
        """
        try:
            self.s3_client.download_file(self.bucket_name, remote_name, local_path)
            return local_path
        except ClientError as e:
            raise StorageError(f"S3 download failed ({_client_error_code(e)}): {e}")
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"Failed to download from S3: {e}")

    def delete(self, path: str):
        """
        Delete an object.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=path
            )
        except ClientError as e:
            raise StorageError(f"S3 delete failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete from S3: {e}")

    def list_files(self, prefix: str = '', recursive: bool = True) -> List[Dict[str, Any]]:
        """
        List objects under a prefix.

        Args:
            prefix: Directory-like key prefix ('' for the whole bucket)
            recursive: Include objects in nested "directories"

        Returns:
            List of dicts with 'path', 'last_modified' (epoch seconds) and 'size'

        Raises:
            StorageError: If listing fails
        """
        prefix = (prefix or '').strip('/')
        if prefix:
            prefix += '/'

        params = {'Bucket': self.bucket_name, 'Prefix': prefix}
        if not recursive:
            params['Delimiter'] = '/'

        try:
            files = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(**params):
                for obj in page.get('Contents', []):
                    if obj['Key'].endswith('/'):
                        continue
                    files.append({
                        'path': obj['Key'],
                        'last_modified': obj['LastModified'].timestamp(),
                        'size': obj['Size']
                    })

            return files

        except ClientError as e:
            raise StorageError(f"S3 list failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

    def file_exists(self, path: str) -> bool:
        """True if the object exists."""
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=path)
            return True
        except ClientError as e:
            if _client_error_code(e) in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise StorageError(f"S3 head failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to check S3 object: {e}")

    def file_size(self, path: str) -> int:
        """
        Size of an object in bytes.

        Raises:
            StorageError: If the object is missing or cannot be inspected
        """
        try:
            response = self.s3_client.head_object(Bucket=self.bucket_name, Key=path)
            return response['ContentLength']
        except ClientError as e:
            raise StorageError(f"S3 head failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to check S3 object: {e}")


class LocalStorage:
    """
    Handler for backups in a local directory.

    Keys are paths relative to base_path.
    """

    def __init__(self, base_path: str, log: Optional[logging.Logger] = None):
        """
        Initialize local storage handler.

        Args:
            base_path: Base directory for stored backups (created if missing)
        """
        self.base_path = Path(base_path)
        self.log = log or logger

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create local storage directory: {e}")

    def __repr__(self):
        return f"LocalStorage(base_path={str(self.base_path)!r})"

    def get_full_path(self, relative_path: str) -> str:
        """Full filesystem path of a key."""
        return str(self.base_path / relative_path.lstrip('/'))

    def upload(self, local_path: str, remote_name: str) -> str:
        """
        Copy a file into the storage directory and verify its size.

        Returns:
            Key of the stored file

        Raises:
            StorageError: If the copy fails or sizes differ
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        dest_path = Path(self.get_full_path(remote_name))

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(local_path, dest_path)
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to store locally: {e}")

        local_size = os.path.getsize(local_path)
        remote_size = self.file_size(remote_name)
        if remote_size != local_size:
            raise StorageError(
                f"Upload size mismatch for {remote_name}: local={local_size}, remote={remote_size}"
            )

        return remote_name

    def download(self, remote_name: str, local_path: str) -> str:
        """
        Copy a stored file out to local_path.

        Raises:
            StorageError: If the file is missing or the copy fails
        """
        source = Path(self.get_full_path(remote_name))
        if not source.is_file():
            raise StorageError(f"File not found in local storage: {remote_name}")

        try:
            shutil.copy2(source, local_path)
            return local_path
        except OSError as e:
            raise StorageError(f"Failed to copy {remote_name} from local storage: {e}")

    def delete(self, path: str):
        """
        Delete a stored file.

        Raises:
            StorageError: If deletion fails
        """
        full_path = Path(self.get_full_path(path))

        try:
            if full_path.exists():
                full_path.unlink()
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete local file: {e}")

    def list_files(self, prefix: str = '', recursive: bool = True) -> List[Dict[str, Any]]:
        """
        List stored files under a directory prefix.

        Returns:
            List of dicts with 'path', 'last_modified' (epoch seconds) and 'size'

        Raises:
            StorageError: If listing fails
        """
        root = Path(self.get_full_path(prefix or ''))

        if not root.exists():
            return []

        try:
            files = []
            entries = root.rglob('*') if recursive else root.iterdir()

            for file_path in entries:
                if file_path.is_file():
                    stat = file_path.stat()
                    files.append({
                        'path': file_path.relative_to(self.base_path).as_posix(),
                        'last_modified': stat.st_mtime,
                        'size': stat.st_size
                    })

            return files

        except OSError as e:
            raise StorageError(f"Failed to list local files: {e}")

    def file_exists(self, path: str) -> bool:
        return Path(self.get_full_path(path)).is_file()

    def file_size(self, path: str) -> int:
        try:
            return os.path.getsize(self.get_full_path(path))
        except OSError as e:
            raise StorageError(f"Failed to get size of {path}: {e}")


def create_storage(remote: Dict[str, Any], log: Optional[logging.Logger] = None):
    """
    Build a storage handler from one remote definition.

    Args:
        remote: Dict with 'driver' ('s3', 'b2' or 'local') and its settings

    Raises:
        ValueError: If the driver is unknown
    """
    driver = remote.get('driver')

    if driver == 's3':
        return S3Storage(
            access_key=remote['key'],
            secret_key=remote['secret'],
            bucket_name=remote['bucket'],
            region=remote['region'],
            endpoint=remote.get('endpoint'),
            log=log
        )

    if driver == 'b2':
        region = remote.get('region') or B2_DEFAULT_REGION
        return S3Storage(
            access_key=remote['key'],
            secret_key=remote['secret'],
            bucket_name=remote['bucket'],
            region=region,
            endpoint=remote.get('endpoint') or f"https://s3.{region}.backblazeb2.com",
            log=log
        )

    if driver == 'local':
        return LocalStorage(remote['root'], log=log)

    raise ValueError(f"Unsupported storage driver: {driver}")


def create_storages(config: Dict[str, Any], log: Optional[logging.Logger] = None) -> List[Dict[str, Any]]:
    """
    Build handlers for every configured remote.

    When REMOTE_DRIVER is set only remotes of that driver are used.

    Returns:
        List of dicts: {'driver': str, 'storage': handler}
    """
    wanted = config.get('REMOTE_DRIVER')
    storages = []

    for remote in config.get('REMOTES', []):
        if wanted and remote.get('driver') != wanted:
            continue
        storages.append({
            'driver': remote['driver'],
            'storage': create_storage(remote, log)
        })

    return storages
