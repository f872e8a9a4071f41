from setuptools import find_packages, setup


extras_require = {}

extras_require["data-postgres"] = [
    'psycopg2-binary>=2.9.10,<3.0'
]

extras_require["data"] = [
    *extras_require["data-postgres"],
]

extras_require["test"] = [
    'pytest>=7.4,<9.0',
    *extras_require["data-postgres"],
]

extras_require["all"] = [
    *extras_require["data"],
]


setup(
    name='hera-core',
    version='1.0.0',
    packages=find_packages(exclude=['tests', 'tests.*']),
    license='MIT',
    description='Cached, multi-tenant CRUD core over the six HERA universal tables',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    install_requires=[
        'python-dateutil>=2.8.2,<3.0',
        'python-dotenv>=1.0.0,<2.0'
    ],
    extras_require=extras_require,
    python_requires=">=3.10"
)
