"""图片流水线：响应归一化、卡片合成与导出。"""
