"""
Модуль для работы с архивами плагинов (ZIP/JAR/WHL, TAR.GZ)
"""

import os
import zipfile
import tarfile
import logging
import tempfile
from typing import List, Optional

from ..constants import ARCHIVE_ARTIFACT_SUFFIXES, TAR_ARTIFACT_SUFFIXES, ZIP_ARTIFACT_SUFFIXES

logger = logging.getLogger(__name__)


def archive_type_of(path: str) -> Optional[str]:
    """'zip', 'tar' или None, если путь не похож на архив."""
    lowered = path.lower()
    if lowered.endswith(ZIP_ARTIFACT_SUFFIXES):
        return 'zip'
    if lowered.endswith(TAR_ARTIFACT_SUFFIXES):
        return 'tar'
    return None


def strip_archive_suffix(file_name: str) -> str:
    lowered = file_name.lower()
    for suffix in sorted(ARCHIVE_ARTIFACT_SUFFIXES, key=len, reverse=True):
        if lowered.endswith(suffix):
            return file_name[:-len(suffix)]
    return os.path.splitext(file_name)[0]


class ArchiveHandler:
    """Обработчик архивов плагинов"""

    def __init__(self, temp_dir: Optional[str] = None):
        """
        Инициализация обработчика архивов.

        Args:
            temp_dir: Временная директория для распаковки (если None, создается автоматически)
        """
        self.temp_dir = temp_dir or tempfile.mkdtemp(prefix="plugins_")
        if not os.path.exists(self.temp_dir):
            os.makedirs(self.temp_dir, exist_ok=True)

    def extract_archive(self, archive_path: str, archive_type: str) -> str:
        """
        Распаковать архив плагина.

        Args:
            archive_path: Путь к архиву
            archive_type: 'zip' или 'tar'

        Returns:
            Путь к распакованной директории

        Raises:
            ValueError: архив повреждён или тип не поддерживается
        """
        archive_name = strip_archive_suffix(os.path.basename(archive_path))
        extract_dir = os.path.join(self.temp_dir, archive_name)
        os.makedirs(extract_dir, exist_ok=True)

        try:
            if archive_type == 'zip':
                with zipfile.ZipFile(archive_path, 'r') as zf:
                    zf.extractall(extract_dir)
            elif archive_type == 'tar':
                with tarfile.open(archive_path, 'r:*') as tf:
                    if hasattr(tarfile, 'data_filter'):
                        tf.extractall(extract_dir, filter='data')
                    else:
                        tf.extractall(extract_dir)
            else:
                raise ValueError(f"Unsupported archive type: {archive_type}")
        except zipfile.BadZipFile as e:
            raise ValueError(f"Invalid ZIP archive {archive_path}: {e}") from e
        except tarfile.TarError as e:
            raise ValueError(f"Invalid TAR archive {archive_path}: {e}") from e

        logger.debug(f"📦 Extracted archive to: {extract_dir}")
        return extract_dir

    @staticmethod
    def list_members(archive_path: str, archive_type: str) -> List[str]:
        """Имена файлов в архиве без распаковки."""
        try:
            if archive_type == 'zip':
                with zipfile.ZipFile(archive_path, 'r') as zf:
                    return zf.namelist()
            with tarfile.open(archive_path, 'r:*') as tf:
                return tf.getnames()
        except zipfile.BadZipFile as e:
            raise ValueError(f"Invalid ZIP archive {archive_path}: {e}") from e
        except tarfile.TarError as e:
            raise ValueError(f"Invalid TAR archive {archive_path}: {e}") from e

    @staticmethod
    def read_member(archive_path: str, archive_type: str, member: str) -> Optional[bytes]:
        """Прочитать один файл из архива; None если его нет."""
        try:
            if archive_type == 'zip':
                with zipfile.ZipFile(archive_path, 'r') as zf:
                    if member not in zf.namelist():
                        return None
                    return zf.read(member)
            with tarfile.open(archive_path, 'r:*') as tf:
                try:
                    fileobj = tf.extractfile(member)
                except KeyError:
                    return None
                return fileobj.read() if fileobj else None
        except zipfile.BadZipFile as e:
            raise ValueError(f"Invalid ZIP archive {archive_path}: {e}") from e
        except tarfile.TarError as e:
            raise ValueError(f"Invalid TAR archive {archive_path}: {e}") from e

