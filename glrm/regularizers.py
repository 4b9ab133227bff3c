# Regularizers for the rows of X and column blocks of Y.
#
# prox(v, step) returns argmin_w  r(w) + ||w - v||^2 / (2 step)  as a new
# array; the input is never modified.
import numpy as np


class Regularizer:
    """Base class; ``value`` is +inf wherever a hard constraint is violated."""

    def __init__(self, scale: float = 1.0):
        self.scale = float(scale)

    def value(self, v) -> float:
        raise NotImplementedError

    def prox(self, v, step: float) -> np.ndarray:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(scale={self.scale})"


class ZeroReg(Regularizer):
    def value(self, v) -> float:
        return 0.0

    def prox(self, v, step: float) -> np.ndarray:
        return np.array(v, dtype=np.float64, copy=True)

    def __repr__(self) -> str:
        return "ZeroReg()"


class QuadReg(Regularizer):
    """scale * ||v||^2"""

    def value(self, v) -> float:
        v = np.asarray(v, dtype=np.float64)
        return self.scale * float(np.sum(v * v))

    def prox(self, v, step: float) -> np.ndarray:
        return np.asarray(v, dtype=np.float64) / (1.0 + 2.0 * step * self.scale)


class L1Reg(Regularizer):
    """scale * ||v||_1, prox is soft thresholding."""

    def value(self, v) -> float:
        return self.scale * float(np.sum(np.abs(v)))

    def prox(self, v, step: float) -> np.ndarray:
        v = np.asarray(v, dtype=np.float64)
        return np.sign(v) * np.maximum(np.abs(v) - step * self.scale, 0.0)


class NonNegConstraint(Regularizer):
    def value(self, v) -> float:
        return 0.0 if np.all(np.asarray(v) >= 0) else np.inf

    def prox(self, v, step: float) -> np.ndarray:
        return np.maximum(np.asarray(v, dtype=np.float64), 0.0)

    def __repr__(self) -> str:
        return "NonNegConstraint()"


class NonNegL1Reg(Regularizer):
    def value(self, v) -> float:
        v = np.asarray(v, dtype=np.float64)
        if np.any(v < 0):
            return np.inf
        return self.scale * float(np.sum(v))

    def prox(self, v, step: float) -> np.ndarray:
        return np.maximum(np.asarray(v, dtype=np.float64) - step * self.scale, 0.0)


class NonNegQuadReg(Regularizer):
    def value(self, v) -> float:
        v = np.asarray(v, dtype=np.float64)
        if np.any(v < 0):
            return np.inf
        return self.scale * float(np.sum(v * v))

    def prox(self, v, step: float) -> np.ndarray:
        v = np.asarray(v, dtype=np.float64)
        return np.maximum(v, 0.0) / (1.0 + 2.0 * step * self.scale)


class QuadConstraint(Regularizer):
    """Indicator of the ball ||v||_2 <= max_2norm."""

    def __init__(self, max_2norm: float = 1.0):
        super().__init__(1.0)
        if max_2norm <= 0:
            raise ValueError("max_2norm must be positive")
        self.max_2norm = float(max_2norm)

    def value(self, v) -> float:
        # small slack so points projected onto the sphere stay feasible
        norm = float(np.linalg.norm(v))
        return 0.0 if norm <= self.max_2norm * (1.0 + 1e-12) else np.inf

    def prox(self, v, step: float) -> np.ndarray:
        v = np.asarray(v, dtype=np.float64)
        norm = float(np.linalg.norm(v))
        if norm <= self.max_2norm:
            return v.copy()
        return v * (self.max_2norm / norm)

    def __repr__(self) -> str:
        return f"QuadConstraint(max_2norm={self.max_2norm})"


# ----------------------------
# Offsets
# ----------------------------
class LastEntryUnpenalized(Regularizer):
    """Apply ``reg`` to every latent coordinate but the last (a free offset)."""

    def __init__(self, reg: Regularizer):
        super().__init__(1.0)
        self.reg = reg

    def value(self, v) -> float:
        return self.reg.value(np.asarray(v)[:-1])

    def prox(self, v, step: float) -> np.ndarray:
        v = np.asarray(v, dtype=np.float64)
        out = v.copy()
        out[:-1] = self.reg.prox(v[:-1], step)
        return out

    def __repr__(self) -> str:
        return f"LastEntryUnpenalized({self.reg!r})"


class FixedLastEntry(Regularizer):
    """Apply ``reg`` to every latent coordinate but the last, held at ``value``."""

    def __init__(self, reg: Regularizer, fixed_value: float = 1.0):
        super().__init__(1.0)
        self.reg = reg
        self.fixed_value = float(fixed_value)

    def value(self, v) -> float:
        v = np.asarray(v, dtype=np.float64)
        if np.any(v[-1] != self.fixed_value):
            return np.inf
        return self.reg.value(v[:-1])

    def prox(self, v, step: float) -> np.ndarray:
        v = np.asarray(v, dtype=np.float64)
        out = v.copy()
        out[:-1] = self.reg.prox(v[:-1], step)
        out[-1] = self.fixed_value
        return out

    def __repr__(self) -> str:
        return f"FixedLastEntry({self.reg!r}, fixed_value={self.fixed_value})"
