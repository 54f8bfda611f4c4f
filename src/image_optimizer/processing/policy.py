"""格式转换决策。"""

from __future__ import annotations

from image_optimizer.core.models import ConversionPolicy


def should_convert(policy: ConversionPolicy, is_animated: bool, has_alpha_transparency: bool) -> bool:
    """决定是否尝试把图片转换为其他格式。

    IE6_SAFE 下带 alpha 透明的图片不转换：IE6 会把透明 PNG 渲染成不透明的灰色。
    """

    if not policy.enabled or is_animated:
        return False
    if policy is ConversionPolicy.IE6_SAFE:
        return not has_alpha_transparency
    return True
