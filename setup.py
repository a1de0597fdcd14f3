from setuptools import setup

setup(
    name='xgboost-json-predictor',
    version='1.0',
    py_modules=[
        'errors',
        'margin_transforms',
        'model_loader',
        'tree_model',
        'tree_predictor',
        'tree_validator',
    ],
    install_requires=['numpy'],
    extras_require={'test': ['pytest']},
    python_requires='>=3.9',
    description='Standalone predictor for XGBoost JSON tree models',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
)
