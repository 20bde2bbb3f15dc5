#!/usr/bin/env python3
"""
Script to run integration tests for GGUF Memory Estimator.

This script downloads a real GGUF model and compares local and ranged remote reads.
"""

import sys
import subprocess
from pathlib import Path


def main():
    """Run integration tests with real GGUF models."""

    print("🧪 GGUF Memory Estimator Integration Tests")
    print("=" * 50)

    # Check if we're in the right directory
    if not Path("pyproject.toml").exists():
        print("❌ Error: Run this script from the project root directory")
        sys.exit(1)

    print("📋 This will:")
    print("  • Download a real GGUF model (gemma-3-1b-it-UD-IQ1_S.gguf)")
    print("  • Decode its header from disk and over HTTP range requests")
    print("  • Compare memory estimates for the local and remote copies")
    print()

    print("🚀 Running integration tests...")
    print()

    cmd = [
        "uv", "run", "python", "-m", "pytest",
        "tests/test_integration.py",
        "-v",
        "-m", "integration",
        "--tb=short"
    ]

    try:
        subprocess.run(cmd, check=True)
        print()
        print("✅ Integration tests completed successfully!")

    except subprocess.CalledProcessError as e:
        print()
        print(f"❌ Integration tests failed with exit code {e.returncode}")
        print()
        print("💡 Tips:")
        print("  • Make sure you have internet access for the model download and range requests")
        print("  • Set HF_TOKEN if the Hub rate-limits anonymous requests")
        print("  • Review test output above for specific errors")
        sys.exit(1)

    except KeyboardInterrupt:
        print()
        print("⏹️  Tests interrupted by user")
        sys.exit(1)


if __name__ == "__main__":
    main()
