"""Pytest configuration and shared fixtures."""

import pytest
from pathlib import Path
import tempfile
import shutil

from flowsync.core.units import ProjectUnit, StaticUnitEnumerator


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    path = Path(tempfile.mkdtemp())
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture(autouse=True)
def isolated_runtime_home(temp_dir, monkeypatch):
    """Keep settings and runtime files out of the real home directory."""
    home = temp_dir / ".flowsync-home"
    monkeypatch.setenv("FLOWSYNC_HOME", str(home))
    return home


@pytest.fixture
def sample_spec_content():
    """Sample flow spec YAML."""
    return """flow:
  id: create-order
  name: Create Order
trigger:
  type: http
  method: POST
  path: /orders
nodes:
  - id: validate
    type: input
  - id: persist
    type: data_store
"""


@pytest.fixture
def sample_project(temp_dir, sample_spec_content):
    """Create a project with two domains, three flows and some implementation files."""
    project = temp_dir / "project"
    flows = project / "specs" / "domains" / "orders" / "flows"
    flows.mkdir(parents=True)
    (flows / "create-order.yaml").write_text(sample_spec_content)
    (flows / "cancel-order.yaml").write_text(sample_spec_content.replace("create-order", "cancel-order"))

    billing = project / "specs" / "domains" / "billing" / "flows"
    billing.mkdir(parents=True)
    (billing / "charge.yaml").write_text(sample_spec_content.replace("create-order", "charge"))

    src = project / "src" / "orders"
    src.mkdir(parents=True)
    (src / "create-order.ts").write_text("export function createOrder() {}\n")
    (src / "create-order.test.ts").write_text("test('creates', () => {})\n")
    return project


@pytest.fixture
def sample_units():
    """The flows of sample_project."""
    return StaticUnitEnumerator(
        [
            ProjectUnit("billing", "charge"),
            ProjectUnit("orders", "cancel-order"),
            ProjectUnit("orders", "create-order", name="Create Order"),
        ]
    )
