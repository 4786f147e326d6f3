from typing import List, Optional


class FileClassifier:
    """Classify file paths by keyword. All checks are case-insensitive."""

    CRITICAL_PATTERNS = [
        'core',
        'auth',
        'infra',
        'payments',
        'security',
        'database',
    ]

    TEST_PATTERNS = [
        '.test.', '.spec.',
        '__tests__/', 'test/',
    ]

    DOC_PATTERNS = [
        '.md', '.txt',
        'readme', 'changelog', 'license',
        'docs/', 'documentation/',
    ]

    GENERATED_PATTERNS = [
        # Lock files
        'package-lock.json', 'yarn.lock', 'pnpm-lock.yaml', '.lock',
        # Build output
        'dist/', 'build/', 'generated/',
        # Minified / bundled
        '.min.js', '.min.css', '.bundle.js',
    ]

    @staticmethod
    def _matches(filepath: str, patterns: List[str]) -> bool:
        path_lower = filepath.lower()
        return any(pattern in path_lower for pattern in patterns)

    @classmethod
    def is_generated(cls, filepath: str) -> bool:
        """Check if file is a lockfile, build output or bundle"""
        return cls._matches(filepath, cls.GENERATED_PATTERNS)

    @classmethod
    def is_doc(cls, filepath: str) -> bool:
        """Check if file is documentation"""
        return cls._matches(filepath, cls.DOC_PATTERNS)

    @classmethod
    def is_test(cls, filepath: str) -> bool:
        """Check if file is a test file"""
        return cls._matches(filepath, cls.TEST_PATTERNS)

    @classmethod
    def critical_keyword(cls, filepath: str) -> Optional[str]:
        """Return the first critical-path keyword found in the path, if any"""
        path_lower = filepath.lower()
        for keyword in cls.CRITICAL_PATTERNS:
            if keyword in path_lower:
                return keyword
        return None

    @classmethod
    def is_critical(cls, filepath: str) -> bool:
        return cls.critical_keyword(filepath) is not None
