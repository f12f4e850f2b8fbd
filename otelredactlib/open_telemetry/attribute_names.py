class UrlFilterAttributeNames:
    # Keys whose scalar values are scanned for URLs
    HTTP_URL: str = "http.url"
    URL: str = "url"
    REQUEST_URL: str = "request.url"
    REQUEST_URI: str = "request_uri"
    ENDPOINT: str = "endpoint"
    URI: str = "uri"
    PATH: str = "path"
    RESOURCE_URL: str = "resource.url"
    NAME: str = "name"

    DEFAULT_TRAVERSAL_KEYS: frozenset[str] = frozenset(
        (
            HTTP_URL,
            URL,
            REQUEST_URL,
            REQUEST_URI,
            ENDPOINT,
            URI,
            PATH,
            RESOURCE_URL,
            NAME,
        )
    )


class ChunkAttributeNames:
    # Sibling metadata written next to a chunked field
    CHUNKED_SUFFIX: str = "_chunked"
    TOTAL_CHUNKS_SUFFIX: str = "_totalChunks"
    CHUNK_CONTEXT_ID_SUFFIX: str = "_chunkContextId"
    CHUNK_SUFFIX: str = "_chunk_"

    # Attributes carried by each synthetic chunk event
    CHUNK_CONTEXT_ID: str = "chunkContextId"
    CHUNK_KEY: str = "chunkKey"
    CHUNK_INDEX: str = "chunkIndex"
    TOTAL_CHUNKS: str = "totalChunks"
    CHUNK: str = "chunk"

    BODY_KEY: str = "body"
    # Prepended to BODY_KEY while it clashes with a record attribute
    BODY_KEY_FALLBACK_PREFIX: str = "log."
    CHUNKED_BODY_PLACEHOLDER: str = "[chunked]"
