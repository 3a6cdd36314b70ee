from abc import ABC, abstractmethod


class AbstractContentStore(ABC):
    """Source of the portfolio background facts sent with every analysis."""

    @abstractmethod
    async def load_context(self) -> str:
        """Load all background facts as one priority-ordered context blob.

        Returns:
            str: Context text, most important sections first. Empty when no
                content is available.
        """
        ...
