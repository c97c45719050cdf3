import math

import pytest
import torch

from kalman_engine import algebra, config
from kalman_engine.algebra import ScalarAlgebra, TorchAlgebra
from kalman_engine.exceptions import ConfigurationError, DimensionMismatchError


def test_scalar_algebra_rejects_matrices():
    scalar = ScalarAlgebra()

    assert scalar.cast([[2]], 1, 1) == 2.0
    assert scalar.zero(1, 1) == 0.0
    assert scalar.identity(1, 1) == 1.0

    with pytest.raises(DimensionMismatchError):
        scalar.zero(2, 1)

    with pytest.raises(DimensionMismatchError):
        scalar.cast([1.0, 2.0], 1, 1)


def test_scalar_divide_by_zero_is_ieee():
    scalar = ScalarAlgebra()

    assert scalar.divide(1.0, 0.0) == math.inf
    assert scalar.divide(-1.0, 0.0) == -math.inf
    assert math.isnan(scalar.divide(0.0, 0.0))
    assert scalar.divide(3.0, 2.0) == 1.5


def test_torch_cast_vectors_and_shapes():
    backend = TorchAlgebra(torch.float64)

    column = backend.cast([1, 2, 3], 3, 1)
    assert column.shape == (3, 1)
    assert column.dtype == torch.float64

    row = backend.cast([1, 0], 1, 2)
    assert row.shape == (1, 2)

    assert backend.cast(5.0, 1, 1).shape == (1, 1)
    assert backend.cast(torch.zeros(4, 2, 2), 2, 2).shape == (4, 2, 2)

    with pytest.raises(DimensionMismatchError):
        backend.cast(torch.zeros(3, 3), 2, 2)


def test_dimension_mismatch_is_value_and_configuration_error():
    with pytest.raises(ValueError):
        TorchAlgebra().cast(torch.zeros(3), 2, 1)

    with pytest.raises(ConfigurationError):
        TorchAlgebra().cast(torch.zeros(3), 2, 1)


def test_torch_divide_is_right_division():
    backend = TorchAlgebra(torch.float64)
    numerator = torch.randn(3, 2, dtype=torch.float64)
    denominator = torch.randn(2, 2, dtype=torch.float64) + 3 * torch.eye(2, dtype=torch.float64)

    result = backend.divide(numerator, denominator)

    assert torch.allclose(result @ denominator, numerator)
    assert torch.allclose(result, numerator @ denominator.inverse())


def test_torch_divide_singular_does_not_raise():
    result = TorchAlgebra().divide(torch.ones(2, 2), torch.zeros(2, 2))

    assert not torch.isfinite(result).all()


def test_torch_missing_mask_is_per_batch_element():
    backend = TorchAlgebra()
    measures = torch.tensor([[1.0, 2.0], [math.nan, 2.0], [1.0, math.nan]])[..., None]

    assert backend.missing_mask(measures).tolist() == [False, True, True]
    assert not backend.is_missing(measures)
    assert backend.is_missing(measures[1:])

    selected = backend.select(backend.missing_mask(measures), torch.zeros(2, 1), torch.ones(3, 2, 1))
    assert selected.flatten().tolist() == [1.0, 1.0, 0.0, 0.0, 0.0, 0.0]


def test_evaluate_is_idempotent_and_materializes_views():
    like = torch.zeros(5, 3, 3)
    expanded = algebra.identity(like)

    assert expanded.shape == (5, 3, 3)
    assert not expanded.is_contiguous()

    evaluated = algebra.evaluate(expanded)
    assert evaluated.is_contiguous()
    assert torch.equal(evaluated, expanded)
    assert algebra.evaluate(evaluated) is evaluated

    assert algebra.evaluate(2.5) == 2.5


def test_free_functions_dispatch_on_type():
    matrix = torch.tensor([[1.0, 2.0], [0.0, 1.0]])

    assert torch.equal(algebra.transpose(matrix), matrix.mT)
    assert torch.equal(algebra.symmetrize(matrix), torch.tensor([[1.0, 1.0], [1.0, 1.0]]))
    assert algebra.transpose(3.0) == 3.0
    assert algebra.symmetrize(3.0) == 3.0
    assert algebra.divide(1.0, 4) == 0.25
    assert algebra.identity(7.0) == 1.0


def test_unregistered_type_raises():
    with pytest.raises(TypeError):
        algebra.algebra_of("not a number")


def test_register_algebra_takes_precedence():
    class HalfScalar(ScalarAlgebra):
        def divide(self, numerator, denominator):
            return numerator / denominator / 2

    class Number(float):
        pass

    algebra.register_algebra(Number, HalfScalar())
    try:
        assert algebra.divide(1.0, Number(1.0)) == 0.5
        assert algebra.divide(1.0, 1.0) == 1.0
    finally:
        del algebra._REGISTRY[Number]


def test_torch_algebra_reads_config():
    config.set_dtype(torch.float64)

    assert TorchAlgebra().dtype == torch.float64
    assert TorchAlgebra().zero(2, 2).dtype == torch.float64
    assert TorchAlgebra(torch.float16).dtype == torch.float16


def test_config_rejects_invalid_dtype():
    with pytest.raises(ValueError, match="Unsupported dtype"):
        config.set_dtype(torch.int32)


def test_torch_algebra_to():
    backend = TorchAlgebra(torch.float32)

    assert backend.to(torch.float64).dtype == torch.float64
    assert backend.to(torch.float64).device == backend.device
    assert backend.to("cpu").dtype == torch.float32

    with pytest.raises(TypeError):
        ScalarAlgebra().to(torch.float64)
