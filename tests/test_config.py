import math

import pytest

from scanmesh.config import CeilingStrategy, ReconstructionConfig, ScanMeshConfig
from scanmesh.errors import ConfigError


def test_defaults_validate(recon_config):
    recon_config.validate()
    assert recon_config.ceiling_strategy == CeilingStrategy.HULL
    assert recon_config.plane_axes == (0, 2)
    assert recon_config.coplanar_cos == pytest.approx(math.cos(math.radians(10.0)))


def test_unknown_strategy(recon_config):
    recon_config.ceiling_strategy = 'alpha_shape'
    with pytest.raises(ConfigError):
        recon_config.validate()


@pytest.mark.parametrize("field_name, value", [
    ('height_axis', 3),
    ('height_threshold', 0.0),
    ('min_point_distance', -0.1),
    ('top_fraction', 1.5),
    ('coplanar_angle_deg', 90.0),
    ('ceiling_normal_threshold', -2.0),
    ('smoothing_iterations', -1),
])
def test_out_of_range_values(recon_config, field_name, value):
    setattr(recon_config, field_name, value)
    with pytest.raises(ConfigError):
        recon_config.validate()


def test_config_error_is_value_error():
    with pytest.raises(ValueError):
        ReconstructionConfig(ceiling_strategy='nope').validate()


def test_service_config(recon_config, tmp_path):
    service_config = ScanMeshConfig(
        rerun_host='10.0.0.2',
        rerun_port=9000,
        log_interval_ms=250,
        export_dir=str(tmp_path),
        reconstruction=recon_config
    )
    service_config.validate()

    assert service_config.rerun_url == "rerun+http://10.0.0.2:9000/proxy"
    assert service_config.log_interval_seconds == 0.25
    assert "Ceiling Strategy: hull" in str(service_config)

    service_config.max_pending_snapshots = 0
    with pytest.raises(ConfigError):
        service_config.validate()
