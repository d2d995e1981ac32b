"""
Create the backing index of one application ahead of traffic.

Usage:
    python scripts/create_index.py <application>

The tracker creates missing indexes on its own when the first event of an
application arrives; this script is for provisioning them beforehand.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)) + '/..')

from repo_documents import DocumentRepo
from settings import settings
from store import APPLICATION_PATTERN


def main(application: str) -> int:
    if not APPLICATION_PATTERN.match(application):
        print(f"ERROR: invalid application name {application!r} (use [a-z0-9_])")
        return 1

    repo = DocumentRepo(settings)
    index = repo.index_name(application)

    print('Connecting to', settings.db_url)
    if repo.index_exists(index):
        print(f'Index {index} already exists')
        return 0

    repo.create_index(index)
    print(f'Index {index} created ({settings.index_shards} partitions)')
    return 0


if __name__ == '__main__':
    if len(sys.argv) != 2:
        print("Usage: python scripts/create_index.py <application>")
        sys.exit(1)

    sys.exit(main(sys.argv[1]))
