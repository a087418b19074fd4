"""
OpenSearch-backed document store with owner-scoped CRUD and vector columns.

Every collection lives in its own index named ``<prefix>_<collection>``. Every
read and write takes an ``owner_id`` and filters on it; calls without an owner
are rejected before reaching the cluster.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import ConflictError, NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .errors import StoreError, ValidationError
from .logging_config import get_logger

logger = get_logger(__name__)

Filters = Optional[Dict[str, Any]]
SortSpec = Optional[Sequence[Tuple[str, str]]]

# Collections and the fields stored as knn_vector columns
COLLECTIONS: Dict[str, Tuple[str, ...]] = {
    'memory_entities': ('embedding', ),
    'memory_relationships': (),
    'note_relationships': (),
    'action_cache': ('embedding', ),
    'interest_profiles': ('interest_vector', ),
    'documents': ('description_embedding', ),
    'document_links': (),
    'notes': ('embedding', ),
    'highlights': ('embedding', ),
}

# Free-text fields; every other string is mapped as a keyword
TEXT_FIELDS = ('text', 'content', 'description', 'natural_language', 'title')

_UPDATE_SCRIPT = """
if (ctx._source.owner_id != params.owner_id) { ctx.op = 'none'; }
else { for (entry in params.fields.entrySet()) { ctx._source[entry.getKey()] = entry.getValue(); } }
"""

_INCREMENT_SCRIPT = """
if (ctx._source.owner_id != params.owner_id) { ctx.op = 'none'; }
else {
  def current = ctx._source.containsKey(params.field) && ctx._source[params.field] != null ? ctx._source[params.field] : 0;
  ctx._source[params.field] = current + params.amount;
}
"""


class OpenSearchError(StoreError):
    """Custom exception for OpenSearch errors."""
    pass


def _require_owner(owner_id: str) -> None:
    if not owner_id or not str(owner_id).strip():
        raise ValidationError('owner_id is required for every store operation')


def build_query(owner_id: str,
                filters: Filters = None,
                any_of: Filters = None,
                exists: Iterable[str] = (),
                ranges: Optional[Dict[str, Dict[str, Any]]] = None,
                exclude_ids: Iterable[str] = ()) -> Dict[str, Any]:
    """Translate store filter arguments into an OpenSearch bool query.

    Args:
        owner_id: Tenant filter, always applied
        filters: field -> value (term) or list of values (terms)
        any_of: field -> value; at least one must match
        exists: Fields that must be present and non-null
        ranges: field -> {'gte'|'gt'|'lte'|'lt': value}
        exclude_ids: Document ids to leave out

    Returns:
        Query body for the ``query`` key
    """
    clauses: List[Dict[str, Any]] = [{'term': {'owner_id': owner_id}}]

    for field, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set)):
            clauses.append({'terms': {field: list(value)}})
        else:
            clauses.append({'term': {field: value}})

    for field in exists:
        clauses.append({'exists': {'field': field}})

    for field, bounds in (ranges or {}).items():
        clauses.append({'range': {field: bounds}})

    query: Dict[str, Any] = {'bool': {'filter': clauses}}

    if any_of:
        query['bool']['should'] = [{
            'terms' if isinstance(value, (list, tuple, set)) else 'term': {
                field: list(value) if isinstance(value, (list, tuple, set)) else value
            }
        } for field, value in any_of.items()]
        query['bool']['minimum_should_match'] = 1

    exclude_ids = list(exclude_ids)
    if exclude_ids:
        query['bool']['must_not'] = [{'ids': {'values': exclude_ids}}]

    return query


class OpenSearchStore:
    """OpenSearch document store with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, client: Optional[OpenSearch] = None):
        """
        Initialize OpenSearch store.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Pre-built client (skips connection setup)
        """
        self.config = config

        if client is not None:
            self.client = client
        else:
            endpoint = config.endpoint
            if '://' in endpoint:
                endpoint = endpoint.split('://', 1)[1]

            auth = None
            if config.use_aws_auth:
                credentials = boto3.Session().get_credentials()
                auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)

            self.client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                     http_auth=auth,
                                     use_ssl=config.port == 443,
                                     verify_certs=config.port == 443,
                                     connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch store for endpoint: {config.endpoint}')

    def index_name(self, collection: str) -> str:
        return f'{self.config.index_prefix}_{collection}'

    def _index_body(self, collection: str) -> Dict[str, Any]:
        properties: Dict[str, Any] = {
            'owner_id': {
                'type': 'keyword'
            },
            'created_at': {
                'type': 'date'
            },
        }
        for field in TEXT_FIELDS:
            properties[field] = {'type': 'text'}
        for field in COLLECTIONS.get(collection, ()):
            properties[field] = {
                'type': 'knn_vector',
                'dimension': self.config.dimension,
                'method': {
                    'name': 'hnsw',
                    'space_type': 'cosinesimil',
                    'engine': 'nmslib'
                }
            }

        return {
            'mappings': {
                'dynamic_templates': [{
                    'strings_as_keywords': {
                        'match_mapping_type': 'string',
                        'mapping': {
                            'type': 'keyword',
                            'ignore_above': 1024
                        }
                    }
                }],
                'properties': properties
            },
            'settings': {
                'index': {
                    'knn': True,
                    'knn.algo_param.ef_search': 100
                }
            }
        }

    def ensure_collection(self, collection: str) -> str:
        """
        Create the collection's index if it doesn't exist.

        Returns:
            'exists', 'created' or 'failed'
        """
        index_name = self.index_name(collection)
        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=index_name, body=self._index_body(collection))
            if response.get('acknowledged', False):
                logger.info(f'Created index {index_name}')
                return 'created'
            return 'failed'
        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')

    def ensure_all(self) -> None:
        for collection in COLLECTIONS:
            self.ensure_collection(collection)

    def insert(self, collection: str, document: Dict[str, Any], doc_id: Optional[str] = None) -> Optional[str]:
        """
        Store a document.

        With an explicit ``doc_id`` the write is create-only: an existing document
        with that id is left untouched and None is returned.

        Args:
            collection: Target collection
            document: Document body; must carry ``owner_id``
            doc_id: Optional deterministic id

        Returns:
            Id of the stored document, or None when doc_id already existed
        """
        _require_owner(document.get('owner_id'))
        body = {k: v for k, v in document.items() if k != 'id'}
        index_name = self.index_name(collection)

        try:
            if doc_id:
                response = self.client.create(index=index_name, id=doc_id, body=body)
            else:
                response = self.client.index(index=index_name, body=body)
            logger.debug(f'Indexed document {response.get("_id")} in {index_name}')
            return response.get('_id')
        except ConflictError:
            logger.debug(f'Document {doc_id} already exists in {index_name}')
            return None
        except OpenSearchException as e:
            logger.error(f'Error indexing document in {index_name}: {e}')
            raise OpenSearchError(f'Failed to index document: {e}')

    def get(self, collection: str, doc_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch one document by id, only if it belongs to the owner.

        Returns:
            Document with its ``id``, or None
        """
        _require_owner(owner_id)
        index_name = self.index_name(collection)
        try:
            response = self.client.get(index=index_name, id=doc_id)
        except NotFoundError:
            return None
        except OpenSearchException as e:
            logger.error(f'Error getting document {doc_id} from {index_name}: {e}')
            raise OpenSearchError(f'Failed to get document: {e}')

        source = response.get('_source') or {}
        if source.get('owner_id') != owner_id:
            return None
        return {'id': response['_id'], **source}

    def find(self,
             collection: str,
             owner_id: str,
             filters: Filters = None,
             any_of: Filters = None,
             exists: Iterable[str] = (),
             ranges: Optional[Dict[str, Dict[str, Any]]] = None,
             exclude_ids: Iterable[str] = (),
             sort: SortSpec = None,
             limit: int = 100) -> List[Dict[str, Any]]:
        """
        Query documents for one owner.

        Args:
            collection: Collection to search
            owner_id: Tenant filter
            filters: Exact-match filters
            any_of: Alternatives, at least one must match
            exists: Fields that must be non-null
            ranges: Range filters
            exclude_ids: Ids to leave out
            sort: List of (field, 'asc'|'desc')
            limit: Maximum number of documents

        Returns:
            List of documents, each with its ``id``
        """
        _require_owner(owner_id)
        index_name = self.index_name(collection)
        body: Dict[str, Any] = {
            'size': limit,
            'query': build_query(owner_id, filters, any_of, exists, ranges, exclude_ids),
        }
        if sort:
            body['sort'] = [{field: {'order': order, 'unmapped_type': 'keyword'}} for field, order in sort]

        try:
            response = self.client.search(index=index_name, body=body)
        except NotFoundError:
            logger.debug(f'Index {index_name} missing, returning no documents')
            return []
        except OpenSearchException as e:
            logger.error(f'Error searching {index_name}: {e}')
            raise OpenSearchError(f'Search failed: {e}')

        results = [{'id': hit['_id'], **hit['_source']} for hit in response['hits']['hits']]
        logger.debug(f'Find on {collection} returned {len(results)} documents for owner {owner_id}')
        return results

    def update(self, collection: str, doc_id: str, owner_id: str, fields: Dict[str, Any]) -> bool:
        """
        Overwrite fields of an owned document.

        Returns:
            True if the document was updated
        """
        _require_owner(owner_id)
        body = {'script': {'source': _UPDATE_SCRIPT, 'lang': 'painless', 'params': {'owner_id': owner_id, 'fields': fields}}}
        return self._scripted_update(collection, doc_id, body)

    def increment(self, collection: str, doc_id: str, owner_id: str, field: str, amount: int = 1) -> bool:
        """
        Atomically add ``amount`` to a numeric field of an owned document.

        Returns:
            True if the counter was incremented
        """
        _require_owner(owner_id)
        body = {
            'script': {
                'source': _INCREMENT_SCRIPT,
                'lang': 'painless',
                'params': {
                    'owner_id': owner_id,
                    'field': field,
                    'amount': amount
                }
            }
        }
        return self._scripted_update(collection, doc_id, body)

    def _scripted_update(self, collection: str, doc_id: str, body: Dict[str, Any]) -> bool:
        index_name = self.index_name(collection)
        try:
            response = self.client.update(index=index_name, id=doc_id, body=body, retry_on_conflict=3)
        except NotFoundError:
            logger.warning(f'Document {doc_id} not found in {index_name} for update')
            return False
        except OpenSearchException as e:
            logger.error(f'Error updating document {doc_id} in {index_name}: {e}')
            raise OpenSearchError(f'Failed to update document: {e}')
        return response.get('result') == 'updated'

    def delete(self, collection: str, doc_id: str, owner_id: str) -> bool:
        """
        Delete an owned document.

        Returns:
            True if a document was deleted
        """
        return self.delete_where(collection, owner_id, filters={'_id': doc_id}) > 0

    def delete_where(self,
                     collection: str,
                     owner_id: str,
                     filters: Filters = None,
                     any_of: Filters = None,
                     ranges: Optional[Dict[str, Dict[str, Any]]] = None) -> int:
        """
        Delete every owned document matching the filters.

        Returns:
            Number of documents deleted
        """
        _require_owner(owner_id)
        index_name = self.index_name(collection)
        body = {'query': build_query(owner_id, filters, any_of, ranges=ranges)}
        try:
            response = self.client.delete_by_query(index=index_name, body=body)
        except NotFoundError:
            return 0
        except OpenSearchException as e:
            logger.error(f'Error deleting from {index_name}: {e}')
            raise OpenSearchError(f'Failed to delete documents: {e}')

        deleted = int(response.get('deleted', 0))
        logger.debug(f'Deleted {deleted} documents from {index_name}')
        return deleted

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name('memory_entities'))
            return response in [True, False]
        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
