import logging
from typing import List

from .models import DiffMetrics, FileChange
from .utils import FileClassifier

logger = logging.getLogger(__name__)


def analyze_files(files: List[FileChange]) -> DiffMetrics:
    """
    Put every changed file in exactly one category.

    First match wins:
        1. rename-only (renamed with no line changes)
        2. generated (lockfiles, build output, bundles)
        3. documentation
        4. test
        5. regular code; critical-path files are counted here too and
           additionally tagged with the matching keyword
    """
    metrics = DiffMetrics()
    critical_paths: List[str] = []

    for file in files:
        path = file.path.lower()

        if file.is_pure_rename:
            metrics.rename_only_files += 1
        elif FileClassifier.is_generated(path):
            metrics.generated_files += 1
        elif FileClassifier.is_doc(path):
            metrics.doc_files += 1
        elif FileClassifier.is_test(path):
            metrics.test_files += 1
        else:
            metrics.regular_code_files += 1
            keyword = FileClassifier.critical_keyword(path)
            if keyword:
                metrics.critical_files += 1
                if keyword not in critical_paths:
                    critical_paths.append(keyword)

    metrics.critical_paths = critical_paths

    logger.debug(
        f"Categorized {len(files)} files: regular={metrics.regular_code_files} "
        f"(critical={metrics.critical_files}), tests={metrics.test_files}, "
        f"docs={metrics.doc_files}, generated={metrics.generated_files}, "
        f"renames={metrics.rename_only_files}"
    )
    return metrics
