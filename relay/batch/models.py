from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class BatchRequest(BaseModel):
    # Entries are not typed as str: a bad entry fails on its own, not the batch
    urls: List[Any]


class FetchResult(BaseModel):
    url: Any
    ok: bool
    status: int
    error: Optional[str] = None
    content: Optional[str] = None
    headers: Optional[Dict[str, str]] = None

    @classmethod
    def success(cls, url: str, status: int, content: str, headers: Dict[str, str]):
        return cls(url=url, ok=True, status=status, content=content, headers=headers)

    @classmethod
    def failure(cls, url: Any, status: int, error: str):
        return cls(url=url, ok=False, status=status, error=error)


class BatchResponse(BaseModel):
    results: List[FetchResult]

    def to_payload(self) -> Dict[str, Any]:
        """Serialize with only the fields that belong to each outcome."""
        return self.model_dump(exclude_unset=True)
