from llamactl.frameworks_drivers.model_repository import ModelRepository
from llamactl.shared.errors import AmbiguousModelError, ModelNotFoundError


class ModelResolver:
    """
    Resolves a user-supplied name fragment into exactly one local model name.
    """

    MAX_SUGGESTIONS = 10

    def __init__(self, repository: ModelRepository):
        self.repository = repository

    def resolve(self, query: str) -> str:
        """
        Resolve the query against the local models.

        An exact (case-insensitive) name match wins; otherwise the query must be
        a substring of exactly one model name.

        Args:
            query: Full model name or a fragment of it.

        Returns:
            The model name without the .gguf extension.

        Raises:
            ValueError: If the query is empty.
            AmbiguousModelError: If several models contain the query.
            ModelNotFoundError: If no model matches.
        """
        if not query or not query.strip():
            raise ValueError("Model query cannot be empty")

        query_lower = query.strip().lower()
        names = [model.name for model in self.repository.list_models()]

        for name in names:
            if name.lower() == query_lower:
                return name

        matches = [name for name in names if query_lower in name.lower()]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            raise AmbiguousModelError(query, matches)

        raise ModelNotFoundError(query, names[:self.MAX_SUGGESTIONS])
