"""Test computed model elements, extra arguments and nonlinear functions."""

import math

import pytest
import torch

from kalman_engine import ControlKalmanFilter, KalmanFilter
from kalman_engine.exceptions import DimensionMismatchError


def test_scalar_nonlinear_transition():
    kf = KalmanFilter(x=3.0, p=1.0)
    kf.transition = lambda x: x * x
    kf.f = lambda x: 2 * x  # Jacobian of the transition

    kf.predict()

    assert kf.x == 9.0
    assert kf.p == 36.0
    assert kf.f == 6.0


def test_linear_functions_match_linear_filter():
    process_matrix = torch.tensor([[1.0, 0.5], [0.0, 1.0]])
    measurement_matrix = torch.tensor([[1.0, 0.0]])
    kf = KalmanFilter(2, 1, f=process_matrix, h=measurement_matrix, q=torch.eye(2) * 0.1, r=torch.eye(1))
    ekf = kf.clone()
    ekf.transition = lambda x: process_matrix @ x
    ekf.observation = lambda x: measurement_matrix @ x

    assert ekf.capabilities.extended
    assert not kf.capabilities.extended

    for measure in torch.randn(5, 1, 1):
        kf.predict()
        kf.update(measure)
        ekf.predict()
        ekf.update(measure)

    assert torch.allclose(kf.x, ekf.x)
    assert torch.allclose(kf.p, ekf.p)


def test_range_observation():
    # 2D position observed through its distance to the origin
    kf = KalmanFilter(2, 1, x=[3.0, 4.0], p=torch.eye(2), r=0.01)
    kf.observation = lambda x: x.norm(dim=-2, keepdim=True)
    kf.h = lambda x: (x / x.norm(dim=-2, keepdim=True)).mT

    kf.update(torch.tensor([[6.0]]))

    assert torch.allclose(kf.h, torch.tensor([[0.6, 0.8]]))
    assert kf.y.item() == pytest.approx(1.0)
    # The estimate moves along the observed direction
    assert kf.x.norm().item() == pytest.approx(6.0, abs=0.05)
    assert kf.x[1, 0].item() / kf.x[0, 0].item() == pytest.approx(4 / 3)


def test_observation_noise_computed_from_measure():
    kf = KalmanFilter(x=0.0, p=1.0)
    kf.r = lambda x, z: 0.1 * abs(z)

    kf.update(10.0)

    assert kf.r == pytest.approx(1.0)
    assert kf.x == pytest.approx(5.0)
    assert kf.capabilities.computed_observation_noise


def test_update_arguments_select_sensor():
    kf = KalmanFilter(2, 1, update_types=(int,), r=1.0)
    kf.h = lambda x, sensor: torch.eye(2)[sensor : sensor + 1]

    kf.update(torch.tensor([[2.0]]), 1)

    assert kf.update_arguments == (1,)
    assert torch.equal(kf.h, torch.tensor([[0.0, 1.0]]))
    assert kf.x[0, 0].item() == 0.0
    assert kf.x[1, 0].item() == pytest.approx(1.0)

    kf.update(torch.tensor([[2.0]]), 0)

    assert kf.update_arguments == (0,)
    assert kf.x[0, 0].item() == pytest.approx(1.0)


def test_prediction_arguments_drive_process():
    kf = KalmanFilter(2, 1, prediction_types=(float,), x=[0.0, 1.0], p=torch.zeros(2, 2))
    kf.f = lambda x, dt: torch.tensor([[1.0, dt], [0.0, 1.0]])
    kf.q = lambda x, dt: torch.eye(2) * dt

    kf.predict(2.0)

    assert kf.prediction_arguments == (2.0,)
    assert torch.allclose(kf.x, torch.tensor([[2.0], [1.0]]))
    assert torch.allclose(kf.p, torch.eye(2) * 2)

    kf.predict(0.5)

    assert kf.prediction_arguments == (0.5,)
    assert torch.allclose(kf.x, torch.tensor([[2.5], [1.0]]))
    assert torch.allclose(kf.p, torch.tensor([[3.0, 1.0], [1.0, 2.5]]))


def test_control_input():
    kf = ControlKalmanFilter(x=1.0, p=1.0, g=0.5)

    kf.predict(4.0)

    assert kf.u == 4.0
    assert kf.x == 3.0

    kf.transition = lambda x, u: x - u

    kf.predict(1.0)

    assert kf.x == 2.0
    assert kf.capabilities.nonlinear_transition


def test_control_callables_receive_input():
    received = []

    def process_matrix(x, u, dt):
        received.append((u.item(), dt))
        return torch.eye(2)

    kf = ControlKalmanFilter(2, 1, 1, prediction_types=(float,), f=process_matrix)
    kf.g = lambda dt: torch.tensor([[0.5 * dt**2], [dt]])

    kf.predict(torch.tensor([[2.0]]), 1.0)

    assert received == [(2.0, 1.0)]
    assert torch.allclose(kf.x, torch.tensor([[1.0], [2.0]]))
    assert torch.allclose(kf.g, torch.tensor([[0.5], [1.0]]))


def test_computed_value_with_wrong_shape_rejected():
    kf = KalmanFilter(2, 1)
    kf.q = lambda x: torch.eye(3)

    with pytest.raises(DimensionMismatchError):
        kf.predict()


def test_singular_innovation_propagates_non_finite():
    kf = KalmanFilter(x=0.0, p=0.0, r=0.0)

    kf.update(1.0)

    assert math.isnan(kf.k)
    assert math.isnan(kf.x)
