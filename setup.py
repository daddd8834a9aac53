#
# Copyright 2023 aiofp2 team
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

import setuptools


with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setuptools.setup(
    name="aiofp2",
    packages=setuptools.find_packages(exclude=["tests"]),
    version="0.1.0",
    description="asyncio proxy for the Aqara Presence Sensor FP2",
    keywords=["HomeKit", "Aqara", "FP2", "deCONZ"],
    python_requires=">=3.10",
    install_requires=[
        "cryptography>=2.5",
        "zeroconf>=0.132.0",
        "orjson>=3.7.8",
        "commentjson>=0.9.0",
        "chacha20poly1305-reuseable>=0.12.1",
        "async-interrupt>=1.1.1",
        "async-timeout>=4.0.2;python_version<'3.11'",
        "aiohttp>=3.8",
    ],
    extras_require={"test": ["pytest", "pytest-asyncio>=0.21"]},
    entry_points={"console_scripts": ["aiofp2=aiofp2.__main__:sync_main"]},
    license="Apache License 2.0",
    long_description=long_description,
    long_description_content_type="text/markdown",
)
