#    Copyright 2025 FAO
# 
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
# 
#        http://www.apache.org/licenses/LICENSE-2.0
# 
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the a specific language governing permissions and
#    limitations under the License.
# 
#    Author: Carlo Cancellieri (ccancellieri@gmail.com)
#    Company: FAO, Viale delle Terme di Caracalla, 00100 Rome, Italy
#    Contact: copyright@fao.org - http://fao.org/contact-us/terms/en/

import os
import sys
from setuptools import setup, find_namespace_packages
import logging
from typing import Set, Dict, List

# --- Configuration ---
logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s', stream=sys.stdout)

# The project root is the directory containing this setup.py file.
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))

APP = "geovault"


# --- Parse Requirements ---
# Kept self-contained: setup must not import the package it installs.
def parse_requirements(file_path: str, processed_files: Set[str] = None) -> Set[str]:
    if processed_files is None:
        processed_files = set()

    expanded_file_path = os.path.expandvars(file_path)
    if not os.path.isabs(expanded_file_path):
        expanded_file_path = os.path.join(PROJECT_ROOT, expanded_file_path)

    if expanded_file_path in processed_files:
        return set()
    processed_files.add(expanded_file_path)

    if not os.path.exists(expanded_file_path):
        return set()

    packages = set()
    with open(expanded_file_path, 'r', encoding='utf-8') as f:
        for line in f:
            processed_line = os.path.expandvars(line.strip())
            if not processed_line or processed_line.startswith('#'):
                continue
            if processed_line.startswith('-r'):
                _, next_file = processed_line.split(maxsplit=1)
                next_file_path = os.path.join(os.path.dirname(expanded_file_path), next_file)
                packages.update(parse_requirements(next_file_path, processed_files))
            else:
                packages.add(processed_line)
    return packages


# Makes ${APP_DIR} available for substitution in requirements files.
os.environ['APP_DIR'] = PROJECT_ROOT


def list_components(base_dir: str) -> List[str]:
    component_root = os.path.join(PROJECT_ROOT, "src", APP, base_dir)
    if not os.path.isdir(component_root):
        return []
    return sorted(
        item for item in os.listdir(component_root)
        if os.path.isdir(os.path.join(component_root, item)) and not item.startswith('__')
    )


def process_component_dependencies(
    env_var: str,
    base_dir: str,
    extras_dict: Dict[str, List[str]],
    all_packages_set: Set[str]
):
    """
    Collects src/geovault/{base_dir}/{component}/requirements.txt for the
    components enabled in `env_var` (comma list or '*'), one extra each.
    """
    components_str = os.environ.get(env_var, "")
    if not components_str:
        logging.info(f"'{env_var}' not set. No dependencies will be processed for this type.")
        return

    if components_str.strip() == "*":
        components = list_components(base_dir)
        logging.info(f"Wildcard '*' detected for '{env_var}'. Discovered components: {components}")
    else:
        components = [c.strip() for c in components_str.split(',') if c.strip()]

    for component_name in components:
        relative_path = os.path.join("src", APP, base_dir, component_name, "requirements.txt")
        component_packages = parse_requirements(relative_path)
        extras_dict[component_name] = sorted(component_packages)
        all_packages_set.update(component_packages)


def build_extras() -> Dict[str, List[str]]:
    """Builds extras_require from the requirements files."""
    extras_require: Dict[str, List[str]] = {}
    env_based_packages: Set[str] = set()
    all_discovered_packages: Set[str] = set()

    extras_require['test'] = sorted(parse_requirements('requirements-test.txt'))
    extras_require['dev'] = sorted(parse_requirements('requirements-dev.txt'))

    process_component_dependencies("GEOVAULT_MODULES", "modules", extras_require, env_based_packages)
    extras_require["geovault-enabled-modules"] = sorted(env_based_packages)

    for component_name in list_components("modules"):
        all_discovered_packages.update(
            parse_requirements(os.path.join("src", APP, "modules", component_name, "requirements.txt"))
        )

    all_deps = set(extras_require['test']) | set(extras_require['dev']) | all_discovered_packages
    extras_require['all'] = sorted(all_deps)

    for extra, pkgs in extras_require.items():
        if pkgs:
            logging.info(f"  - {extra}: {pkgs}")
    return extras_require


setup(
    name="geovault",
    version="0.1.0",
    description="Multi-tenant spatial resource and query engine on PostgreSQL/PostGIS",
    author="Carlo Cancellieri",
    author_email="ccancellieri@gmail.com",
    license="Apache-2.0",
    python_requires=">=3.10",
    packages=find_namespace_packages(where="src", include=["geovault*"]),
    package_dir={"": "src"},
    install_requires=sorted(parse_requirements('requirements.txt')),
    extras_require=build_extras()
)
