from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, ConfigDict, model_validator, field_validator

from .auth import Auth, ApiKeyAuth, BasicAuth, BearerAuth, NoAuth


class CollectionError(ValueError):
    """The collection file is unusable (missing, unparseable or empty)."""


# ---------------------------
# Postman collection file (input schema)
# ---------------------------

class PostmanKV(BaseModel):
    """A key/value entry as Postman writes them for headers, query params and auth fields."""

    model_config = ConfigDict(extra='allow')

    key: str = ""
    value: str = ""
    disabled: bool = False

    @field_validator('key', 'value', mode='before')
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        # Postman stores booleans/numbers for some fields; templates only deal in text
        if v is None:
            return ""
        if isinstance(v, bool):
            return "true" if v else "false"
        return str(v)


class PostmanAuth(BaseModel):
    model_config = ConfigDict(extra='allow')

    type: str = "noauth"
    bearer: Optional[List[PostmanKV]] = None
    apikey: Optional[List[PostmanKV]] = None
    basic: Optional[List[PostmanKV]] = None

    @staticmethod
    def _lookup(entries: Optional[List[PostmanKV]]) -> Dict[str, str]:
        return {kv.key: kv.value for kv in (entries or [])}

    def to_auth(self) -> Auth:
        """Convert to an Auth variant; incomplete or unsupported auth becomes NoAuth."""
        kind = (self.type or "").lower()
        if kind == "bearer":
            token = self._lookup(self.bearer).get("token", "")
            if token:
                return BearerAuth(token=token)
        elif kind == "apikey":
            fields = self._lookup(self.apikey)
            name, value = fields.get("key", ""), fields.get("value", "")
            if name and value:
                return ApiKeyAuth(header_name=name, value=value)
        elif kind == "basic":
            fields = self._lookup(self.basic)
            if fields.get("username"):
                return BasicAuth(username=fields["username"], password=fields.get("password", ""))
        return NoAuth()


class PostmanURL(BaseModel):
    model_config = ConfigDict(extra='allow')

    raw: str = ""
    query: Optional[List[PostmanKV]] = None


class PostmanBody(BaseModel):
    model_config = ConfigDict(extra='allow')

    mode: Optional[str] = None
    raw: str = ""


class PostmanRequest(BaseModel):
    model_config = ConfigDict(extra='allow')

    method: str = "GET"
    url: Union[PostmanURL, str] = ""
    header: Optional[List[PostmanKV]] = None
    body: Optional[PostmanBody] = None
    auth: Optional[PostmanAuth] = None

    @field_validator('url', mode='before')
    @classmethod
    def normalize_url(cls, v: Any) -> Any:
        if v is None:
            return PostmanURL()
        if isinstance(v, str):
            return PostmanURL(raw=v)
        return v

    @field_validator('header', mode='before')
    @classmethod
    def parse_text_headers(cls, v: Any) -> Any:
        # Older exports may store headers as one "Key: Value" text block
        if isinstance(v, str):
            headers = []
            for line in v.splitlines():
                if ':' in line:
                    k, val = line.split(':', 1)
                    headers.append({"key": k.strip(), "value": val.strip()})
            return headers
        return v


class PostmanItem(BaseModel):
    """A folder (has `item`) or a request (has `request`)."""

    model_config = ConfigDict(extra='allow')

    name: str = ""
    request: Optional[PostmanRequest] = None
    item: Optional[List["PostmanItem"]] = None

    @model_validator(mode='after')
    def check_folder_or_request(self) -> 'PostmanItem':
        if self.item is None and self.request is None:
            raise ValueError(f"Item '{self.name}' has neither a request nor nested items")
        return self


class PostmanInfo(BaseModel):
    model_config = ConfigDict(extra='allow')

    name: str = ""


class PostmanCollection(BaseModel):
    """Top-level collection export. Unknown sections (variables, events, ...) are allowed."""

    model_config = ConfigDict(extra='allow')

    info: PostmanInfo = Field(default_factory=PostmanInfo)
    item: List[PostmanItem]
    auth: Optional[PostmanAuth] = None


PostmanItem.model_rebuild()


# ---------------------------
# Request-template tree used by the runner
# ---------------------------

class KeyValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    value: str


class RequestTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    method: str = "GET"
    url_template: str = ""
    query_params: Tuple[KeyValue, ...] = ()
    headers: Tuple[KeyValue, ...] = ()
    body_template: str = ""
    auth: Optional[Auth] = None


class LeafNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    request: RequestTemplate


class FolderNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    children: Tuple[Union["FolderNode", LeafNode], ...] = ()


FolderNode.model_rebuild()

Node = Union[FolderNode, LeafNode]


class CollectionTree(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    nodes: Tuple[Node, ...] = ()
    auth: Optional[Auth] = None

    def iter_nodes(self) -> Iterator[Tuple[int, Node]]:
        """Depth-first walk yielding (depth, node) for folders and leaves alike."""
        stack: List[Tuple[int, Node]] = [(0, n) for n in reversed(self.nodes)]
        while stack:
            depth, node = stack.pop()
            yield depth, node
            if isinstance(node, FolderNode):
                stack.extend((depth + 1, c) for c in reversed(node.children))

    def leaves(self) -> List[LeafNode]:
        return [n for _, n in self.iter_nodes() if isinstance(n, LeafNode)]


def _to_request_template(name: str, req: PostmanRequest) -> RequestTemplate:
    url = req.url if isinstance(req.url, PostmanURL) else PostmanURL(raw=req.url)
    return RequestTemplate(
        name=name,
        method=(req.method or "GET").strip().upper(),
        url_template=url.raw,
        query_params=tuple(KeyValue(key=q.key, value=q.value) for q in (url.query or []) if not q.disabled),
        headers=tuple(KeyValue(key=h.key, value=h.value) for h in (req.header or []) if not h.disabled),
        body_template=req.body.raw if req.body is not None else "",
        auth=req.auth.to_auth() if req.auth is not None else None,
    )


def _to_node(item: PostmanItem) -> Node:
    if item.item is not None:
        return FolderNode(name=item.name, children=tuple(_to_node(c) for c in item.item))
    return LeafNode(name=item.name, request=_to_request_template(item.name, item.request))


def build_collection_tree(collection: PostmanCollection) -> CollectionTree:
    return CollectionTree(
        name=collection.info.name,
        nodes=tuple(_to_node(i) for i in collection.item),
        auth=collection.auth.to_auth() if collection.auth is not None else None,
    )


def validate_collection_data(data: Any) -> PostmanCollection:
    """Validate already-loaded collection data; raises ValidationError or CollectionError."""
    if not isinstance(data, dict):
        raise CollectionError("Collection must be a JSON/YAML object with 'info' and 'item' sections")
    if 'item' not in data and 'collection' in data and isinstance(data['collection'], dict):
        # Exports fetched through the Postman API wrap the collection one level down
        data = data['collection']
    return PostmanCollection(**data)


def load_collection(path: Union[str, Path]) -> CollectionTree:
    """Load a collection export (JSON or YAML) and build its request-template tree."""
    p = Path(path)
    if not p.exists() or not p.is_file():
        raise FileNotFoundError(f"Collection file not found: {p}")
    try:
        with p.open('r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise CollectionError(f"Error parsing collection {p}: {e}") from e
    if data is None:
        raise CollectionError(f"Collection file is empty: {p}")
    return build_collection_tree(validate_collection_data(data))


# ---------------------------
# Run settings
# ---------------------------

class RunSettings(BaseModel):
    model_config = ConfigDict(extra='forbid')

    collection_path: Path
    data_path: Path
    workers: int = Field(10, ge=1)
    bearer_token: Optional[str] = None
    metrics_file: Optional[Path] = None
    output_dir: Path = Path(".")
    quiet: bool = False
    verbose: bool = False


def format_validation_error(err: Union[ValidationError, Exception]) -> str:
    """Return a human-friendly string for Pydantic validation errors."""
    if isinstance(err, ValidationError):
        lines: List[str] = ["Validation failed with the following errors:"]
        for e in err.errors():
            loc = ".".join(str(x) for x in e.get('loc', []))
            msg = e.get('msg', 'Invalid value')
            typ = e.get('type', '')
            lines.append(f" - {loc}: {msg} ({typ})")
        return "\n".join(lines)
    else:
        return f"Validation failed: {err}"
