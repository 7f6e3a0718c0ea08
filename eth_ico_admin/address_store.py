import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

LOCKFILE_SUFFIX = ".lock"


class AddressStore:
    """
    Flat file store of deployed contract addresses.

    Each contract name maps to ``<directory>/<name>.lock`` whose whole content is
    the hex address. A missing file means the contract is not deployed yet.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def path_for(self, contract_name: str) -> Path:
        return self.directory / f"{contract_name}{LOCKFILE_SUFFIX}"

    def read(self, contract_name: str) -> Optional[str]:
        """Returns the stored address, or None if the contract has no record."""
        file_path = self.path_for(contract_name)
        if not file_path.is_file():
            return None
        address = file_path.read_text(encoding="utf-8").strip()
        return address or None

    def write(self, contract_name: str, address: str) -> None:
        """Overwrites the record for ``contract_name``, never leaving it half written."""
        self.directory.mkdir(parents=True, exist_ok=True)
        file_path = self.path_for(contract_name)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{contract_name}.", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(address)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, file_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.info(f"Saved {contract_name} address {address} to {file_path}")

    def delete(self, contract_name: str) -> None:
        file_path = self.path_for(contract_name)
        if file_path.exists():
            file_path.unlink()
            logger.info(f"Removed deployment record {file_path}")
