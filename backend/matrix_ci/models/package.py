"""
包与步骤模型 - 每个包的有序步骤列表及特性集

对应流水线定义中的 packages 段
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator


class StepKind(str, Enum):
    """步骤类型"""
    BUILD = "build"
    DOC = "doc"
    TEST = "test"


class FeatureSet(BaseModel):
    """传给 test 步骤的特性组合"""
    name: str = "base"
    flags: list[str] = Field(default_factory=list)
    no_default_features: bool = False

    def to_args(self) -> list[str]:
        """渲染为工具参数"""
        args: list[str] = []
        if self.no_default_features:
            args.append("--no-default-features")
        if self.flags:
            args.extend(["--features", " ".join(self.flags)])
        return args


class PackageFeatures(BaseModel):
    """基础集（stable/beta）与扩展集（nightly 系）"""
    base: FeatureSet = Field(default_factory=lambda: FeatureSet(name="base"))
    extended: FeatureSet = Field(default_factory=lambda: FeatureSet(name="extended"))

    @model_validator(mode="after")
    def _name_sets(self) -> PackageFeatures:
        # 名称由所在位置决定
        self.base.name = "base"
        self.extended.name = "extended"
        return self


class StepSpec(BaseModel):
    """单个步骤声明"""
    kind: StepKind
    secrets: list[str] = Field(default_factory=list, description="步骤依赖的密钥名")

    model_config = {"extra": "forbid"}

    @model_validator(mode="before")
    @classmethod
    def _from_shorthand(cls, data: Any) -> Any:
        # 允许直接写 "build"
        if isinstance(data, str):
            return {"kind": data}
        return data

    @property
    def name(self) -> str:
        return self.kind.value


class Package(BaseModel):
    """待构建的包"""
    name: str
    path: Path | None = Field(None, description="相对工作区的目录，默认与包名相同")
    steps: list[StepSpec] = Field(default_factory=list)
    features: PackageFeatures = Field(default_factory=PackageFeatures)

    model_config = {"extra": "forbid"}

    def working_dir(self, workspace: Path) -> Path:
        return workspace / (self.path or Path(self.name))


class StepInvocation(BaseModel):
    """一次工具调用：{subcommand, working_directory, feature_flags[]}"""
    subcommand: str
    working_dir: Path
    feature_args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict, repr=False)
