"""Global pytest configuration and fixtures."""

import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "src"))


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--addressing-style",
        action="store",
        default="path",
        choices=["path", "virtual"],
        help="Addressing style used by integration tests (default: path)",
    )
    parser.addoption(
        "--no-verify-ssl",
        action="store_true",
        default=False,
        help="Disable SSL certificate verification (INSECURE - use for testing only)",
    )


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "s3_handler(name): mark test as exercising a specific S3 operation"
    )
    config.addinivalue_line(
        "markers", "edge_case: mark test as edge case or boundary condition"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as requiring a live S3 endpoint"
    )
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture(scope="session")
def test_bucket():
    """Test bucket name from environment."""
    return os.getenv("TEST_BUCKET_NAME", "s3-sigv4-test-bucket")


@pytest.fixture(scope="session")
def aws_region():
    """Signing region from environment."""
    return os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1"))
