"""
Source tree checks - every service module carries the licensee notice
"""

import os

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
PACKAGES = ('auth', 'pco_ops', 'storage', 'sync')
TOP_LEVEL = ('app.py', 'config.py', 'gunicorn.conf.py')

HEADER = [
    '# © 2025 Experience Community Church. All Rights Reserved.',
    '# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).',
    '# Unauthorized use, distribution, or modification is prohibited.',
]


def _source_files():
    paths = [os.path.join(ROOT, name) for name in TOP_LEVEL]
    for package in PACKAGES:
        for name in sorted(os.listdir(os.path.join(ROOT, package))):
            if name.endswith('.py'):
                paths.append(os.path.join(ROOT, package, name))
    return paths


class TestLicenseHeader:

    @pytest.mark.packaging
    @pytest.mark.parametrize('path', _source_files(), ids=lambda p: os.path.relpath(p, ROOT))
    def test_header_names_this_licensee(self, path):
        with open(path, encoding='utf-8') as f:
            first_lines = [f.readline().rstrip('\n') for _ in HEADER]
        assert first_lines == HEADER
