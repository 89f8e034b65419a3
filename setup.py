from setuptools import setup, find_packages

setup(
    name="lesion_analysis",
    version="0.1",
    packages=find_packages(exclude=['tests', 'tests.*']),
    py_modules=['run_lesion_analysis'],
    install_requires=[
        'numpy',
        'SimpleITK',
        'tqdm'
    ],
    extras_require={
        'test': [
            'pytest',
            'scipy'
        ]
    },
    entry_points={
        'console_scripts': [
            'run-lesion-analysis=run_lesion_analysis:main'
        ]
    },
)
