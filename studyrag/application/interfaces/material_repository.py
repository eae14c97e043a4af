"""Abstract repository interface (port) for materials and their section links."""

from abc import ABC, abstractmethod

from studyrag.domain.entities import Material, MaterialChunk


class MaterialRepository(ABC):
    """Port for material persistence."""

    @abstractmethod
    async def create_with_chunks(
        self,
        material: Material,
        chunks: list[MaterialChunk],
        section_id: str | None = None,
    ) -> Material:
        """Persist a material, all of its chunks and its optional section link atomically.

        Either the material row, every chunk row and the link become visible, or none do.
        """
        ...

    @abstractmethod
    async def get_by_id(self, material_id: str) -> Material | None:
        ...

    @abstractmethod
    async def get_many(self, material_ids: list[str]) -> list[Material]:
        """Materials in creation order; unknown ids are skipped."""
        ...

    @abstractmethod
    async def list_materials(self, skip: int = 0, limit: int = 100) -> list[Material]:
        ...

    @abstractmethod
    async def update(self, material: Material) -> Material:
        ...

    @abstractmethod
    async def delete(self, material_id: str) -> bool:
        """Delete a material; its chunks are removed in the same transaction."""
        ...

    @abstractmethod
    async def link_to_section(self, material_id: str, section_id: str) -> None:
        ...

    @abstractmethod
    async def get_material_ids_for_sections(self, section_ids: list[str]) -> list[str]:
        """Distinct material ids linked to any of the sections, in creation order."""
        ...
