"""Placement models mapping tile-local coordinates into the mosaic frame.

Only pure translations are used. The concrete model class depends on the
run's dimensionality and is chosen once through `model_class_for`.
"""
from dataclasses import dataclass, field
from typing import ClassVar, Type, Union

import numpy as np

from ._typing_utils import FloatArray, Vector


@dataclass
class _TranslationModel:
    DIMENSIONALITY: ClassVar[int] = 0

    translation: FloatArray = field(default_factory=lambda: np.zeros(0))

    def __post_init__(self) -> None:
        if len(self.translation) == 0:
            self.translation = np.zeros(self.DIMENSIONALITY)
        self.set(self.translation)

    def set(self, translation: Vector) -> None:
        translation = np.asarray(translation, dtype=np.float64)
        if translation.shape != (self.DIMENSIONALITY,):
            raise ValueError(
                f"{type(self).__name__} needs {self.DIMENSIONALITY} components, "
                f"got shape {translation.shape}"
            )
        self.translation = translation.copy()

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return bool(np.array_equal(self.translation, other.translation))


@dataclass(eq=False)
class TranslationModel2D(_TranslationModel):
    DIMENSIONALITY: ClassVar[int] = 2


@dataclass(eq=False)
class TranslationModel3D(_TranslationModel):
    DIMENSIONALITY: ClassVar[int] = 3


TranslationModel = Union[TranslationModel2D, TranslationModel3D]


def model_class_for(dimensionality: int) -> Type[TranslationModel]:
    if dimensionality == 2:
        return TranslationModel2D
    elif dimensionality == 3:
        return TranslationModel3D
    else:
        raise ValueError(f"Unsupported dimensionality: {dimensionality}")


def translation_model(dimensionality: int, offset: Vector) -> TranslationModel:
    """Build a translation model from the first `dimensionality` components of offset."""
    return model_class_for(dimensionality)(
        np.asarray(offset, dtype=np.float64)[:dimensionality]
    )
